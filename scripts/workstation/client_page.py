"""Browser client page served by the proxy from the noVNC web root."""

from __future__ import annotations

import html
import json
import os
import tempfile

from pathlib import Path
from string import Template

from .clipboard import CLIPBOARD_BAR_HTML, ClipboardDirection, browser_script
from .config import StartupConfig

WEBSOCKET_PATH = "websockify"

# $-placeholders only; the page itself has no literal dollar signs.
PAGE_TEMPLATE = Template("""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0, maximum-scale=1.0, user-scalable=no">
    <title>$title</title>
    <style>
        * { margin: 0; padding: 0; box-sizing: border-box; }
        html, body { width: 100%; height: 100%; overflow: hidden; background: $background; }
        #screen { width: 100%; height: calc(100% - 36px); display: flex; justify-content: center; align-items: center; overflow: hidden; }
        #status { position: fixed; top: 50%; left: 50%; transform: translate(-50%, -50%); color: #d4d4d4; font-family: sans-serif; text-align: center; z-index: 1000; }
        #status.hidden { display: none; }
        .spinner { border: 4px solid #333; border-top: 4px solid #0078d4; border-radius: 50%; width: 40px; height: 40px; animation: spin 1s linear infinite; margin: 0 auto 20px; }
        @keyframes spin { 0% { transform: rotate(0deg); } 100% { transform: rotate(360deg); } }
        #clipboard-bar { position: fixed; bottom: 0; left: 0; right: 0; height: 36px; background: #252526; border-top: 1px solid #3c3c3c; display: flex; align-items: center; padding: 0 8px; gap: 8px; z-index: 1000; }
        #clipboard-bar input { flex: 1; background: #3c3c3c; color: #cccccc; border: 1px solid #555; border-radius: 3px; padding: 6px 10px; font-size: 13px; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; }
        #clipboard-bar input:focus { outline: none; border-color: #0078d4; }
        #clipboard-bar input::placeholder { color: #888; }
        #clipboard-bar button { background: #0e639c; color: #fff; border: none; border-radius: 3px; padding: 6px 14px; font-size: 13px; cursor: pointer; white-space: nowrap; }
        #clipboard-bar button:hover { background: #1177bb; }
        #clipboard-bar .hint { color: #888; font-size: 11px; white-space: nowrap; }
    </style>
</head>
<body>
    <div id="status"><div class="spinner"></div><p>Connecting...</p><p id="error"></p></div>
    <div id="screen"></div>
$clipboard_bar
    <script type="module">
        import RFB from './core/rfb.js';
        const status = document.getElementById('status'), error = document.getElementById('error'), screen = document.getElementById('screen');
        const clipboardInput = document.getElementById('clipboard-input'), sendBtn = document.getElementById('send-btn');
        let rfb = null;

$send_script
        function connect() {
            if (rfb) { rfb.disconnect(); rfb = null; }
            const protocol = location.protocol === 'https:' ? 'wss:' : 'ws:';
            const url = protocol + '//' + location.host + '/' + $websocket_path;

            // The virtual display has a fixed size; never ask the server to resize it.
            try {
                rfb = new RFB(screen, url, { scaleViewport: true, resizeSession: false, background: $background_js });
                rfb.addEventListener('connect', () => {
                    status.classList.add('hidden');
                });
                rfb.addEventListener('disconnect', () => {
                    status.classList.remove('hidden');
                    error.textContent = 'Reconnecting...';
                    setTimeout(connect, $reconnect_delay);
                });
$receive_script
            } catch (err) { error.textContent = err.message; setTimeout(connect, $reconnect_delay); }
        }

        connect();
    </script>
</body>
</html>
""")


def render_page(config: StartupConfig, *, background: str = "#1e1e1e") -> str:
    return PAGE_TEMPLATE.substitute(
        title=html.escape(config.page_title),
        background=background,
        background_js=json.dumps(background),
        websocket_path=json.dumps(WEBSOCKET_PATH),
        reconnect_delay=int(config.reconnect_delay_ms),
        clipboard_bar=CLIPBOARD_BAR_HTML.rstrip("\n"),
        send_script=browser_script(ClipboardDirection.BROWSER_TO_REMOTE),
        receive_script=browser_script(ClipboardDirection.REMOTE_TO_BROWSER).rstrip("\n"),
    )


def write_page(config: StartupConfig, web_root: Path | None = None) -> Path:
    """Atomically replace index.html in the noVNC web root."""
    root = web_root or config.novnc_dir
    root.mkdir(parents=True, exist_ok=True)
    target = root / "index.html"
    fd, tmp_name = tempfile.mkstemp(dir=root, prefix=".index-", suffix=".html")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(render_page(config))
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return target
