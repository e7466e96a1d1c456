"""
Clipboard bridge between the virtual display and the browser client.

Inside the display two ``autocutsel`` watchers keep the CLIPBOARD and
PRIMARY selections in step. The browser half lives in the served page and
is deliberately one-sided: remote clipboard changes are written to the
browser clipboard as they arrive, while the browser can only push text
through an explicit Send action, because pages may not read the user's
clipboard without a gesture.
"""

from __future__ import annotations

import asyncio
import enum
import shutil

from dataclasses import dataclass

from .context import StackContext, StageFailed
from .process import ProcessRole, ProcessState

SELECTIONS: tuple[tuple[str, ...], ...] = ((), ("-selection", "PRIMARY"))


class ClipboardDirection(enum.Enum):
    REMOTE_TO_BROWSER = "remote-to-browser"
    BROWSER_TO_REMOTE = "browser-to-remote"

    @property
    def automatic(self) -> bool:
        return self is ClipboardDirection.REMOTE_TO_BROWSER


@dataclass(slots=True, frozen=True)
class ClipboardMessage:
    direction: ClipboardDirection
    payload: str

    @property
    def automatic(self) -> bool:
        return self.direction.automatic


# ---------------------------------------------------------------------------
# Browser half, embedded in the client page
# ---------------------------------------------------------------------------

SEND_PLACEHOLDER = "Cmd+V here, then click Send (or press Enter)"

CLIPBOARD_BAR_HTML = f"""\
    <div id="clipboard-bar">
        <span class="hint">Paste:</span>
        <input type="text" id="clipboard-input" placeholder="{SEND_PLACEHOLDER}">
        <button id="send-btn">Send to VM</button>
        <span class="hint">| Copy: select text in VM, then Cmd+C here</span>
    </div>
"""

# Browser -> remote: only on an explicit Send.
BROWSER_TO_REMOTE_JS = f"""\
        function sendClipboard() {{
            const text = clipboardInput.value;
            if (text && rfb && rfb._rfbConnectionState === 'connected') {{
                rfb.clipboardPasteFrom(text);
                clipboardInput.value = '';
                clipboardInput.placeholder = '✓ Sent! Now Ctrl+Shift+V in terminal';
                setTimeout(() => {{ clipboardInput.placeholder = '{SEND_PLACEHOLDER}'; }}, 2000);
            }}
        }}

        sendBtn.addEventListener('click', sendClipboard);
        clipboardInput.addEventListener('keydown', (e) => {{ if (e.key === 'Enter') sendClipboard(); }});
"""

# Remote -> browser: every clipboard event from the server.
REMOTE_TO_BROWSER_JS = """\
                rfb.addEventListener('clipboard', (e) => {
                    if (navigator.clipboard && e.detail.text) {
                        navigator.clipboard.writeText(e.detail.text).catch(err => console.warn('Clipboard write failed:', err));
                    }
                });
"""


def browser_script(direction: ClipboardDirection) -> str:
    return REMOTE_TO_BROWSER_JS if direction.automatic else BROWSER_TO_REMOTE_JS


# ---------------------------------------------------------------------------
# Display half
# ---------------------------------------------------------------------------


class ClipboardBridge:
    def __init__(self, ctx: StackContext) -> None:
        self.ctx = ctx

    @property
    def command(self) -> str:
        return self.ctx.config.clipboard_command

    async def start(self) -> None:
        """Launch both selection watchers; raise StageFailed if degraded."""
        ctx = self.ctx
        role = ProcessRole.CLIPBOARD_BRIDGE
        if shutil.which(self.command) is None:
            raise StageFailed(role, f"{self.command} not found, clipboard sync may be flaky")

        ctx.console.info("Starting autocutsel for clipboard sync...")
        for selection in SELECTIONS:
            await ctx.launch(role, [self.command, *selection], log_name="autocutsel")

        await asyncio.sleep(ctx.config.companion_settle)
        if not ctx.processes[role].alive:
            raise StageFailed(role, f"{self.command} exited early, clipboard sync unavailable")
        ctx.mark(role, ProcessState.READY)
