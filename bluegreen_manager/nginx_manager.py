"""
NGINX configuration management for blue-green traffic switching.

Renders a proxy configuration whose single upstream points at the active
slot, writes it in place, validates it with ``nginx -t`` and gracefully
reloads nginx. A rejected configuration is rolled back to the previous
file so the previous routing stays in effect.
"""

import re
import shutil
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
import logging

from bluegreen_manager.logging_config import ROUTER_LOGGER, log_router_operation
from bluegreen_manager.models import SlotId

logger = logging.getLogger(ROUTER_LOGGER)

ACTIVE_SLOT_MARKER = "# bluegreen-active-slot:"
NGINX_COMMAND_TIMEOUT = 30  # seconds

_MARKER_RE = re.compile(r"^# bluegreen-active-slot:\s*([AB])\s*$", re.MULTILINE)


class NginxManager:
    """Switches nginx's upstream between the two slots."""

    def __init__(
        self,
        config_path: str = "/etc/bluegreen/nginx/nginx.conf",
        container_name: Optional[str] = None,
        listen_port: int = 80,
        server_name: str = "_",
        keep_backups: int = 10,
        upstreams: Optional[Dict[SlotId, str]] = None,
    ):
        """
        Initialize nginx manager.

        Args:
            config_path: nginx.conf managed by this process (bind-mounted into the proxy)
            container_name: Docker container running nginx, or None for nginx on the host
            listen_port: Port the proxy listens on
            server_name: nginx server_name for the proxy
            keep_backups: Number of timestamped backups to retain
            upstreams: Per-slot host:port as seen from nginx, when it differs
                from the address the manager probes
        """
        self.config_path = Path(config_path)
        self.config_dir = self.config_path.parent
        self.container_name = container_name
        self.listen_port = listen_port
        self.server_name = server_name
        self.keep_backups = keep_backups
        self.upstreams = dict(upstreams or {})
        self._last_validation_error = ""
        # Configuration nginx last reloaded successfully, None when unknown
        self._loaded_config: Optional[str] = None

        # The directory is created by deployment setup with proper permissions
        if not self.config_dir.exists():
            logger.error(f"Nginx config directory does not exist: {self.config_dir}")
            raise RuntimeError(
                f"Nginx config directory {self.config_dir} does not exist. "
                "This should be created by deployment scripts with proper permissions."
            )

    def upstream_for(self, slot: SlotId, address: str) -> str:
        """Address nginx should proxy to for ``slot``."""
        return self.upstreams.get(slot, address)

    def switch(self, slot: SlotId, address: str) -> tuple[bool, str]:
        """
        Route all new connections to ``slot``.

        Switching to the slot nginx has already loaded is a no-op success.

        Args:
            slot: Slot to activate
            address: host:port of the slot, used unless an upstream override exists

        Returns:
            Tuple of (applied: bool, error_message: str)
            error_message is empty string on success
        """
        start_time = time.time()
        upstream = self.upstream_for(slot, address)
        new_config = self.generate_config(slot, upstream)
        previous_config = self.get_current_config()

        if previous_config == new_config and self._loaded_config == new_config:
            logger.info(f"Nginx already routes to slot {slot.value} ({upstream}), nothing to apply")
            return True, ""

        logger.info(f"Switching nginx upstream to slot {slot.value} ({upstream})")

        backup_file = self._create_timestamped_backup()
        if backup_file:
            logger.debug(f"Created backup before switch: {backup_file.name}")

        # Write in place to preserve the inode for Docker bind mounts
        try:
            self._write_in_place(new_config)
        except OSError as e:
            error_msg = f"Failed to write nginx config in-place: {e}"
            self._restore(previous_config)
            log_router_operation("switch", success=False, error=error_msg)
            return False, error_msg

        if not self._validate_config():
            error_msg = f"Nginx config validation failed: {self._last_validation_error}"
            self._restore(previous_config)
            log_router_operation("switch", success=False, error=error_msg)
            return False, error_msg

        if not self._reload_nginx():
            error_msg = "Nginx reload failed"
            self._restore(previous_config, reload=True)
            log_router_operation("switch", success=False, error=error_msg)
            return False, error_msg

        self._loaded_config = new_config
        duration_ms = int((time.time() - start_time) * 1000)
        self._cleanup_old_backups(keep_count=self.keep_backups)
        log_router_operation(
            "switch",
            success=True,
            details={"slot": slot.value, "address": upstream, "duration_ms": duration_ms},
        )
        return True, ""

    def current_target(self) -> Optional[SlotId]:
        """Slot the current configuration routes to, if it was written by us."""
        current = self.get_current_config()
        if not current:
            return None
        match = _MARKER_RE.search(current)
        return SlotId(match.group(1)) if match else None

    def get_current_config(self) -> Optional[str]:
        """Get current nginx configuration."""
        if self.config_path.exists():
            return self.config_path.read_text()
        return None

    def generate_config(self, slot: SlotId, address: str) -> str:
        """
        Generate complete nginx configuration routing to one slot.

        Args:
            slot: Slot to route to
            address: host:port of the slot

        Returns:
            Complete nginx.conf content
        """
        return f"""{ACTIVE_SLOT_MARKER} {slot.value}
events {{
    worker_connections 1024;
}}

http {{
    include /etc/nginx/mime.types;
    default_type application/octet-stream;

    sendfile on;
    keepalive_timeout 65;

    access_log /var/log/nginx/access.log;
    error_log /var/log/nginx/error.log;

    upstream bluegreen_active {{
        server {address};
    }}

    server {{
        listen {self.listen_port};
        server_name {self.server_name};

        # Proxy liveness, independent of the slots
        location = /proxy-health {{
            access_log off;
            default_type text/plain;
            return 200 "healthy\\n";
        }}

        location / {{
            proxy_pass http://bluegreen_active;
            proxy_http_version 1.1;
            proxy_set_header Host $host;
            proxy_set_header X-Real-IP $remote_addr;
            proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
            proxy_set_header X-Forwarded-Proto $scheme;
            proxy_set_header X-Bluegreen-Slot {slot.value};
        }}
    }}
}}
"""

    def _nginx_cmd(self, *args: str) -> List[str]:
        if self.container_name:
            return ["docker", "exec", self.container_name, "nginx", *args]
        return ["nginx", "-c", str(self.config_path), *args]

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(cmd, capture_output=True, timeout=NGINX_COMMAND_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.error(f"Timeout running: {' '.join(cmd)}")
            return subprocess.CompletedProcess(cmd, 1, b"", b"command timed out")
        except FileNotFoundError as e:
            logger.error(f"Command not found: {cmd[0]}")
            return subprocess.CompletedProcess(cmd, 127, b"", str(e).encode())

    def _validate_config(self) -> bool:
        """Validate nginx configuration."""
        result = self._run(self._nginx_cmd("-t"))
        self._last_validation_error = result.stderr.decode().strip() if result.returncode else ""

        if result.returncode != 0:
            logger.error(f"Nginx validation failed: {self._last_validation_error}")
            return False
        return True

    def _reload_nginx(self) -> bool:
        """Gracefully reload nginx so in-flight connections drain on old workers."""
        logger.info(f"Reloading nginx{' container ' + self.container_name if self.container_name else ''}")
        result = self._run(self._nginx_cmd("-s", "reload"))

        if result.returncode != 0:
            logger.warning(f"Nginx reload failed with return code {result.returncode}")
            logger.warning(f"STDERR: {result.stderr.decode()}")
            return False

        # Log any warnings from nginx (like the http2 deprecation)
        if result.stderr:
            logger.warning(f"Nginx reload warnings: {result.stderr.decode()}")
        return True

    def _write_in_place(self, content: str) -> None:
        # Do NOT use os.rename() here: a new inode breaks Docker bind mounts
        with open(self.config_path, "w") as f:
            f.write(content)

    def _restore(self, previous_config: Optional[str], reload: bool = False) -> None:
        """Put the previous configuration back after a failed switch."""
        try:
            if previous_config is None:
                if self.config_path.exists():
                    self.config_path.unlink()
            else:
                self._write_in_place(previous_config)
            logger.info("Restored previous nginx configuration")
            log_router_operation("restore", success=True)
        except OSError as e:
            # The rejected config stays on disk; nginx still runs what it last loaded
            logger.critical(f"Failed to restore previous nginx config: {e}")
            log_router_operation("restore", success=False, error=str(e))
            return

        if reload and previous_config is not None:
            if self._reload_nginx():
                self._loaded_config = previous_config
            else:
                self._loaded_config = None
                logger.critical("Nginx reload after restore failed. Manual intervention required!")

    def _create_timestamped_backup(self) -> Optional[Path]:
        """
        Create a timestamped backup of the current nginx config.

        Returns:
            Path to backup file if created, None if no config to backup
        """
        if not self.config_path.exists() or self.config_path.stat().st_size == 0:
            logger.debug("No existing config to backup")
            return None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        backup_file = self.config_dir / f"{self.config_path.name}.backup.{timestamp}"
        try:
            shutil.copy2(self.config_path, backup_file)
            return backup_file
        except OSError as e:
            logger.error(f"Failed to create timestamped backup: {e}")
            return None

    def _get_backup_files(self) -> List[Path]:
        """Backup files, newest first."""
        backups = list(self.config_dir.glob(f"{self.config_path.name}.backup.*"))
        backups.sort(key=lambda p: p.name, reverse=True)
        return backups

    def _cleanup_old_backups(self, keep_count: int = 10) -> None:
        """Remove old backup files, keeping only the most recent ones."""
        for old_backup in self._get_backup_files()[keep_count:]:
            try:
                old_backup.unlink()
                logger.debug(f"Removed old backup: {old_backup.name}")
            except OSError as e:
                logger.warning(f"Failed to remove old backup {old_backup.name}: {e}")
