import time
import sqlite3
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, List

from heartwatch.local.database.base import BaseDBManager
from heartwatch.registry.component import Category, MonitoredComponent
from heartwatch.registry.events import RegistryEvent, RegistryEventKind

if TYPE_CHECKING:
    from heartwatch.registry import ComponentRegistry

log = logging.getLogger(__name__)


class ComponentDBManager(BaseDBManager):
    """
    The persistent component store.

    Keeps the descriptive part of every registered component so the
    registry can be rebuilt on the next start. Alert state is not stored.
    """

    def __init__(self, db_path: Path):
        super().__init__(db_path, lock=threading.Lock(), enable_wal=True)
        self._registry = None

    def initialize_database(self) -> None:
        """
        Creates the components table if needed.

        :raises sqlite3.Error: If the database cannot be opened or created.
        """
        self.ensure_parent_dir()
        try:
            self.execute('''
                CREATE TABLE IF NOT EXISTS components (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    node TEXT NOT NULL,
                    topic TEXT,
                    path TEXT,
                    metadata TEXT,
                    category TEXT,
                    app_manager_name TEXT,
                    jmx_enabled INTEGER DEFAULT 0,
                    is_managed_app INTEGER DEFAULT 0,
                    registered_at REAL
                )
            ''')
            log.debug("Component database table created/verified.")
        except sqlite3.Error as e:
            log.critical(f"Could not create component database tables: {e}", exc_info=True)
            raise

    def load_all(self) -> List[MonitoredComponent]:
        """
        :raises sqlite3.Error: If the store cannot be read.
        """
        rows = self.fetch_all("SELECT * FROM components ORDER BY registered_at, id")
        components = [
            MonitoredComponent(
                name=row["name"],
                node=row["node"],
                topic=row["topic"],
                path=row["path"],
                metadata=row["metadata"],
                category=Category.from_wire(row["category"]),
                app_manager_name=row["app_manager_name"],
                jmx_enabled=bool(row["jmx_enabled"]),
                is_managed_app=bool(row["is_managed_app"]),
            )
            for row in rows
        ]
        log.info(f"Loaded {len(components)} components from {self.db_path}")
        return components

    def upsert(self, component: MonitoredComponent) -> None:
        self.execute(
            '''INSERT INTO components (id, name, node, topic, path, metadata, category,
                                       app_manager_name, jmx_enabled, is_managed_app, registered_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   topic = excluded.topic, path = excluded.path, metadata = excluded.metadata,
                   category = excluded.category, app_manager_name = excluded.app_manager_name,
                   jmx_enabled = excluded.jmx_enabled, is_managed_app = excluded.is_managed_app''',
            (
                component.id, component.name, component.node, component.topic, component.path,
                component.metadata, component.category.value, component.app_manager_name,
                int(component.jmx_enabled), int(component.is_managed_app), time.time(),
            )
        )
        log.debug(f"Stored component '{component.id}'")

    def remove(self, component_id: str) -> None:
        self.execute("DELETE FROM components WHERE id = ?", (component_id,))
        log.debug(f"Removed stored component '{component_id}'")

    #* --- Registry Subscription ---
    def attach(self, registry: "ComponentRegistry") -> None:
        """Keeps the store in step with every later register/unregister."""
        self._registry = registry
        registry.subscribe(self.on_registry_event)

    def on_registry_event(self, event: RegistryEvent) -> None:
        try:
            if event.kind is RegistryEventKind.REGISTERED:
                self.upsert(self._registry.get(event.component_id))
            elif event.kind is RegistryEventKind.UNREGISTERED:
                self.remove(event.component_id)
        except sqlite3.Error as e:
            log.error(f"Failed to persist {event.kind.value} of '{event.component_id}': {e}")
