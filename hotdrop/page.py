"""Default page served to peers when the host supplies none."""

INDEX_HTML = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>HotDrop</title>
  <style>
    body { font-family: system-ui, -apple-system, Roboto, Arial, sans-serif; margin: 24px; }
    #files { margin-top: 16px; }
    .row { display: flex; gap: 8px; align-items: center; margin: 6px 0; }
    .thumb { width: 64px; height: 64px; object-fit: cover; border-radius: 8px; background: #eee; }
    #messages { min-height: 48px; padding: 8px; border: 1px solid #ddd; border-radius: 8px; }
  </style>
</head>
<body>
  <h2>HotDrop</h2>
  <form id="uploadForm" method="post">
    <input id="fileInput" type="file" />
    <input id="nameInput" type="text" placeholder="Optional file name" />
    <button type="submit">Upload</button>
  </form>
  <div id="files"></div>
  <h3>Messages</h3>
  <div id="messages"></div>
  <div style="margin:8px 0;color:#666;">You are: <span id="whoami">(loading...)</span></div>
  <div class="row">
    <input id="sendInput" type="text" placeholder="Type message" autocomplete="off"
           style="flex:1;font-size:16px;padding:8px;" />
    <button id="sendBtn" type="button">Send</button>
  </div>
  <script>
    function show(text) {
      const p = document.createElement('div');
      p.textContent = String(text);
      document.getElementById('messages').appendChild(p);
    }
    async function refresh() {
      const names = await (await fetch('/list')).json();
      const root = document.getElementById('files');
      root.innerHTML = '';
      for (const n of names) {
        const row = document.createElement('div');
        row.className = 'row';
        const img = document.createElement('img');
        img.className = 'thumb';
        img.src = '/files/' + encodeURIComponent(n);
        const a = document.createElement('a');
        a.href = '/files/' + encodeURIComponent(n);
        a.textContent = n;
        a.download = n;
        row.appendChild(img);
        row.appendChild(a);
        root.appendChild(row);
      }
    }
    async function whoami() {
      try {
        const data = await (await fetch('/whoami')).json();
        document.getElementById('whoami').textContent = (data && data.ip) || '(unknown)';
      } catch (e) {
        document.getElementById('whoami').textContent = '(error)';
      }
    }

    // Push over a WebSocket; fall back to polling while it is down.
    let socket = null;
    let polling = false;
    function connect() {
      const proto = location.protocol === 'https:' ? 'wss://' : 'ws://';
      socket = new WebSocket(proto + location.host + '/ws');
      socket.onmessage = (e) => show(e.data);
      socket.onclose = () => { socket = null; setTimeout(connect, 2000); };
    }
    async function poll() {
      if (polling || (socket && socket.readyState === WebSocket.OPEN)) return;
      polling = true;
      try {
        const msgs = await (await fetch('/poll')).json();
        for (const m of msgs) show(m);
      } catch (e) {
      } finally {
        polling = false;
      }
    }

    function send() {
      const input = document.getElementById('sendInput');
      const text = String(input.value || '').trim();
      if (!text) return;
      const body = new URLSearchParams();
      body.set('text', text);
      fetch('/message', {
        method: 'POST',
        headers: {'Content-Type': 'application/x-www-form-urlencoded'},
        body: body.toString()
      }).then((r) => { if (r.ok) { input.value = ''; setTimeout(poll, 50); } });
    }
    document.getElementById('sendBtn').addEventListener('click', send);
    document.getElementById('sendInput').addEventListener('keydown', (e) => {
      if (e.key === 'Enter') { e.preventDefault(); send(); }
    });

    document.getElementById('uploadForm').addEventListener('submit', async (e) => {
      e.preventDefault();
      const file = document.getElementById('fileInput').files[0];
      if (!file) return;
      const name = document.getElementById('nameInput').value || file.name;
      const dataUrl = await new Promise((res, rej) => {
        const fr = new FileReader();
        fr.onload = () => res(fr.result);
        fr.onerror = rej;
        fr.readAsDataURL(file);
      });
      const body = new URLSearchParams();
      body.set('filename', name);
      body.set('base64', String(dataUrl).split(',')[1] || '');
      const r = await fetch('/', {
        method: 'POST',
        headers: {'Content-Type': 'application/x-www-form-urlencoded'},
        body: body.toString()
      });
      if (r.ok) { await refresh(); e.target.reset(); }
    });

    refresh();
    whoami();
    connect();
    setInterval(poll, 1000);
  </script>
</body>
</html>
"""


def build_index_html(override=None):
    return override if override is not None else INDEX_HTML
