"""
Registry

Dynorm owns the store client and the shared schema document and maps entity names to
their compiled Entity classes. Each class is compiled on the first model() call and
reused afterwards. Registries are independent; create one per schema document/store.

Example:
    orm = Dynorm(schema=document, config=DynormConfig.for_local_development())
    User = orm.model("User")
    user = User({"id": "u1", "email": "a@x.com"}).save()
"""

import logging
import threading
from typing import Any, Dict, Optional, Type

from .config import DynormConfig
from .core.store_client import StoreClient
from .models.entity import Entity, compile_entity
from .models.schema import compile_schema

logger = logging.getLogger(__name__)


class Dynorm:
    """Entity registry bound to one store client and one schema document."""

    def __init__(
        self,
        client=None,
        schema: Optional[Dict[str, Any]] = None,
        config: Optional[DynormConfig] = None,
    ):
        """Initialize the registry.

        Args:
            client: Store client (built lazily from config when omitted)
            schema: Shared schema document ``{"definitions": {...}}``
            config: Configuration (defaults to DynormConfig.from_env())
        """
        self.config = config or DynormConfig.from_env()
        self._client = client
        self._schema = schema
        self._models: Dict[str, Type[Entity]] = {}
        self._lock = threading.Lock()

        if self.config.enable_debug_logging:
            logging.getLogger('dynorm').setLevel(logging.DEBUG)

    @property
    def client(self):
        """Store client, created from config on first use."""
        if self._client is None:
            self._client = StoreClient(self.config)
        return self._client

    @client.setter
    def client(self, client) -> None:
        self._client = client

    @property
    def schema(self) -> Optional[Dict[str, Any]]:
        return self._schema

    @schema.setter
    def schema(self, schema: Dict[str, Any]) -> None:
        """Replace the schema document; already compiled entities are kept."""
        self._schema = schema

    def model(self, name: str) -> Type[Entity]:
        """
        Return the Entity class for ``name``, compiling it on first use.

        Raises:
            SchemaNotFoundError: No definition matches ``name``
            SchemaDefinitionError: The definition is malformed
        """
        model = self._models.get(name)
        if model is not None:
            return model

        with self._lock:
            if name not in self._models:
                schema = compile_schema(name, self._schema, table_prefix=self.config.table_prefix)
                self._models[name] = compile_entity(name, schema, self)
                logger.info(f"Registered entity {name} (table {schema.table_name})")
            return self._models[name]

    def __contains__(self, name: str) -> bool:
        return name in self._models
