"""
Escalation External Integrations
=================================

External services for the escalation engine:
- YAML rule file loading with watchdog hot-reload
- Logging notification gateway for email/SMS actions
"""

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.core import RuleLoadException
from src.escalation.application import EscalationRuleSetDTO, INotificationGateway
from src.escalation.domain import EscalationRule, Ticket
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class RuleFileHandler(FileSystemEventHandler):
    """Watchdog event handler for rule file changes."""

    def __init__(self, rule_manager: "YAMLRuleManager", rules_path: Path):
        self.rule_manager = rule_manager
        self.rules_path = rules_path
        super().__init__()

    def _is_rules_file(self, path: str) -> bool:
        return Path(path).resolve() == self.rules_path.resolve()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if self._is_rules_file(event.src_path):
            logger.info("Rule file changed", extra={"path": event.src_path})
            self.rule_manager.reload()

    def on_created(self, event):
        if not event.is_directory and self._is_rules_file(event.src_path):
            self.rule_manager.reload()

    def on_moved(self, event):
        # Editors that save atomically rename a temp file over the original
        if not event.is_directory and self._is_rules_file(event.dest_path):
            self.rule_manager.reload()


class YAMLRuleManager:
    """
    Thread-safe holder of the YAML rule set with hot-reload support.

    Uses watchdog to monitor the file and swap in the new rule set without
    restarting. A file that fails to parse or validate leaves the previous
    rules in place.
    """

    def __init__(self):
        self._rules: List[EscalationRule] = []
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> List[EscalationRule]:
        """
        Initial rule load.

        Raises:
            RuleLoadException: If the file exists but is invalid
        """
        self._path = Path(path)
        rules = self._load_from_file(self._path)
        with self._lock:
            self._rules = rules
        logger.info("Escalation rules loaded", extra={"path": str(self._path), "rules": len(rules)})
        return rules

    def _load_from_file(self, path: Path) -> List[EscalationRule]:
        """Load and validate the YAML rule file."""
        if not path.exists():
            logger.warning("Rule file not found, no YAML rules active", extra={"path": str(path)})
            return []

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            if isinstance(data, list):
                data = {"rules": data}
            rule_set = EscalationRuleSetDTO.model_validate(data)
        except (yaml.YAMLError, ValidationError, OSError) as e:
            raise RuleLoadException(f"Invalid rule file {path}: {e}") from e

        return [rule.to_domain() for rule in rule_set.rules]

    def reload(self) -> bool:
        """Reload rules from file, keeping the current set on failure."""
        if self._path is None:
            return False

        try:
            new_rules = self._load_from_file(self._path)
        except RuleLoadException as e:
            logger.error("Failed to reload escalation rules", extra={"error": e.message})
            return False

        with self._lock:
            self._rules = new_rules
        logger.info("Escalation rules reloaded", extra={"rules": len(new_rules)})
        return True

    def start_watching(self) -> None:
        """
        Start watching the rule file's directory for changes.

        Skips watching when the directory does not exist or inotify is not
        available (some container runtimes).
        """
        if self._path is None:
            raise RuntimeError("Rules not loaded. Call load() first.")

        if not self._path.parent.exists():
            logger.info("Rule directory doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = RuleFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Started watching rule file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static rules", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def rules(self) -> List[EscalationRule]:
        with self._lock:
            return list(self._rules)


class LoggingNotificationGateway(INotificationGateway):
    """
    Notification gateway that records email/SMS requests in the log.

    Stands in for the mail and SMS providers, which are separate services.
    """

    async def send_email(self, recipients: List[str], subject: str, ticket: Ticket, context: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(
            "Escalation email requested",
            extra={
                "ticket_id": ticket.id,
                "tenant_id": ticket.tenant_id,
                "recipients": recipients,
                "subject": subject,
                **context
            }
        )
        return {"channel": "email", "recipients": len(recipients), "queued": True}

    async def send_sms(self, recipients: List[str], message: str, ticket: Ticket, context: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(
            "Escalation SMS requested",
            extra={
                "ticket_id": ticket.id,
                "tenant_id": ticket.tenant_id,
                "recipients": recipients,
                **context
            }
        )
        return {"channel": "sms", "recipients": len(recipients), "queued": True}
