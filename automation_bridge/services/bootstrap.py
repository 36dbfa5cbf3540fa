"""In-page bootstrap scripts.

Every surface gets two document-start scripts: the diagnostic hooks (console
errors, uncaught errors, unhandled rejections) and the bridge bootstrap that
defines ``window.hostBridge``. The automation surface bootstrap additionally
carries the controller-supplied global script.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles

from ..models.surface import SurfaceId

logger = logging.getLogger(__name__)

ASSETS_DIR = Path(__file__).resolve().parent.parent / "assets"

BOOTSTRAP_ASSET = "bridge_bootstrap.js"
HOOKS_ASSET = "diagnostic_hooks.js"

SURFACE_PLACEHOLDER = "__SURFACE_TYPE__"
GLOBAL_SCRIPT_PLACEHOLDER = "/*__GLOBAL_SCRIPT__*/"

BRIDGE_OBJECT = "window.hostBridge"
HOST_BINDING = "__hostBridgePost"

LIVENESS_PROBE = f"typeof {BRIDGE_OBJECT} !== 'undefined' && {BRIDGE_OBJECT}.initialized === true"
READY_PING = f"{BRIDGE_OBJECT}.postMessage('ready')"
PAGE_STATE_PROBE = "JSON.stringify({readyState: document.readyState, href: window.location.href})"
LOCATION_PROBE = "window.location.href"

# Correlated scripts must not hand a promise or large value back to the host
NO_VALUE_SUFFIX = "; undefined;"

CLOSE_CONFIRMATION_SCRIPT = """
(function() {
  if (typeof window.showCloseConfirmation === 'function') {
    window.showCloseConfirmation();
  } else {
    window.postMessage({ type: 'CLOSE_CONFIRMATION_REQUEST' }, '*');
  }
})();
"""


def build_client_message_script(message: Dict) -> str:
    """Script that delivers ``message`` to the page via ``window.postMessage``."""
    return f"window.postMessage({json.dumps(message)}, '*');"


class BootstrapLoader:
    """Loads script assets once and renders them per surface."""

    def __init__(self, assets_dir: Optional[Path] = None):
        """Initialize loader.

        Args:
            assets_dir: Directory holding the script assets
        """
        self.assets_dir = Path(assets_dir) if assets_dir else ASSETS_DIR
        self._cache: Dict[str, str] = {}

    async def load_asset(self, name: str) -> str:
        """Read an asset, caching its contents.

        Args:
            name: File name inside the assets directory

        Returns:
            Asset source text
        """
        if name not in self._cache:
            path = self.assets_dir / name
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                self._cache[name] = await f.read()
            logger.debug(f"Loaded bootstrap asset {path} ({len(self._cache[name])} chars)")
        return self._cache[name]

    async def render_bootstrap(self, surface_id: SurfaceId, global_script: str = "") -> str:
        """Render the bridge bootstrap for a surface.

        The global script is only appended for the automation surface.
        """
        source = await self.load_asset(BOOTSTRAP_ASSET)
        source = source.replace(SURFACE_PLACEHOLDER, surface_id.value)
        if surface_id is SurfaceId.AUTOMATION and global_script:
            source = source.replace(GLOBAL_SCRIPT_PLACEHOLDER, global_script)
        else:
            if surface_id is SurfaceId.AUTOMATION:
                logger.info("No global script to inject in automation surface")
            source = source.replace(GLOBAL_SCRIPT_PLACEHOLDER, "")
        return source

    async def render_hooks(self, surface_id: SurfaceId) -> str:
        source = await self.load_asset(HOOKS_ASSET)
        return source.replace(SURFACE_PLACEHOLDER, surface_id.value)

    async def init_scripts(self, surface_id: SurfaceId, global_script: str = "") -> List[str]:
        """Document-start scripts for a surface, in installation order."""
        return [
            await self.render_hooks(surface_id),
            await self.render_bootstrap(surface_id, global_script),
        ]
