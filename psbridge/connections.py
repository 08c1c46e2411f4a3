"""Remote connectors that open sessions and run compiled pipelines."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from queue import Queue
from typing import Any, Iterable, Mapping, Protocol, Sequence, runtime_checkable
from urllib.parse import urlsplit

from pypsrp.complex_objects import GenericComplexObject
from pypsrp.exceptions import WinRMError
from pypsrp.powershell import PowerShell, RunspacePool
from pypsrp.serializer import Serializer
from pypsrp.wsman import WSMan

from .errors import ConnectionFailed
from .models import (
    CommandDescriptor,
    Credential,
    ManagementTarget,
    NamedParameter,
    Pipeline,
    PositionalList,
    Secret,
)

LOG = logging.getLogger(__name__)

# pypsrp requires the HTTP read timeout to exceed the WSMan operation timeout
_READ_TIMEOUT_MARGIN = 10.0

# CLIXML collection payloads and the .NET type pypsrp deserializes each one as
_COLLECTION_TYPES = {
    "LST": "System.Collections.ArrayList",
    "IE": "System.Collections.ArrayList",
    "STK": "System.Collections.Stack",
    "QUE": "System.Collections.Queue",
    "DCT": "System.Collections.Hashtable",
}


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Raw records plus any error messages reported by the endpoint."""

    records: tuple[object, ...]
    errors: tuple[str, ...] = ()


@runtime_checkable
class RemoteConnection(Protocol):
    """An open session able to run one pipeline at a time."""

    def run(self, pipeline: Pipeline, extra_parameters: Mapping[str, object]) -> RunOutcome:
        """Run the pipeline; extra parameters bind onto the first stage."""

    def close(self) -> None:
        """Dispose of the remote session."""


@runtime_checkable
class RemoteConnector(Protocol):
    """Factory performing the handshake for a management target."""

    def open(
        self,
        target: ManagementTarget,
        credential: Credential,
        *,
        open_timeout: float,
        operation_timeout: float,
    ) -> RemoteConnection:
        """Open a session; raises on handshake failure."""


class PypsrpConnector:
    """Opens PowerShell remoting sessions through pypsrp."""

    def open(
        self,
        target: ManagementTarget,
        credential: Credential,
        *,
        open_timeout: float,
        operation_timeout: float,
    ) -> PypsrpConnection:
        parts = urlsplit(target.endpoint)
        use_ssl = parts.scheme.lower() == "https"
        wsman = WSMan(
            parts.hostname or target.server_fqdn,
            port=parts.port or (443 if use_ssl else 80),
            path=parts.path.lstrip("/") or "wsman",
            ssl=use_ssl,
            username=credential.principal,
            password=credential.password,
            auth=target.authentication.value,
            cert_validation=target.cert_validation,
            connection_timeout=open_timeout,
            operation_timeout=operation_timeout,
            read_timeout=operation_timeout + _READ_TIMEOUT_MARGIN,
        )
        pool = RunspacePool(wsman, configuration_name=target.configuration_name)
        try:
            pool.open()
        except Exception:
            wsman.close()
            raise
        return PypsrpConnection(pool)


class PypsrpConnection:
    """Runs pipelines on an open runspace pool, one command at a time."""

    def __init__(self, pool: RunspacePool) -> None:
        self._pool = pool

    def run(self, pipeline: Pipeline, extra_parameters: Mapping[str, object]) -> RunOutcome:
        shell = PowerShell(self._pool)
        for index, stage in enumerate(pipeline):
            self._add_stage(shell, stage)
            if index == 0:
                for key, value in extra_parameters.items():
                    shell.add_parameter(key, _reveal(value))
        try:
            output = shell.invoke()
        except (WinRMError, OSError) as exc:
            raise ConnectionFailed(f"Remote invocation failed: {exc}", cause=exc) from exc
        errors = tuple(str(record) for record in shell.streams.error)
        if shell.had_errors and not errors:
            errors = ("The remote pipeline failed without reporting an error record.",)
        return RunOutcome(
            records=tuple(adapt_value(item) for item in output or ()),
            errors=errors,
        )

    def close(self) -> None:
        self._pool.close()

    @staticmethod
    def _add_stage(shell: PowerShell, stage: CommandDescriptor) -> None:
        shell.add_cmdlet(stage.name)
        for binding in stage.parameters:
            if isinstance(binding, PositionalList):
                values = list(binding.values)
                shell.add_argument(values[0] if len(values) == 1 else values)
            elif isinstance(binding.value, tuple):
                shell.add_parameter(binding.key, list(binding.value))
            else:
                shell.add_parameter(binding.key, binding.value)


class PypsrpRecord:
    """Adapts a pypsrp ``GenericComplexObject`` to the ``RawRecord`` protocol.

    pypsrp already deserializes primitives to native Python values, so a
    complex object never unwraps to a scalar. Typed collections such as
    ``MultiValuedProperty`` carry their items in ``property_sets`` and unwrap
    to a list or dict.
    """

    __slots__ = ("_obj",)

    def __init__(self, obj: GenericComplexObject) -> None:
        self._obj = obj

    def unwrap(self) -> object | None:
        for payload in getattr(self._obj, "property_sets", None) or ():
            collection = _collection_payload(payload)
            if collection is not None:
                return adapt_value(collection)
        return None

    def property_names(self) -> list[str]:
        names = list(self._adapted())
        names.extend(name for name in self._extended() if name not in names)
        return names

    def read_property(self, name: str) -> object:
        for bag in (self._extended(), self._adapted()):
            if name in bag:
                return adapt_value(bag[name])
        raise KeyError(name)

    def __str__(self) -> str:
        text = getattr(self._obj, "to_string", None)
        return "" if text is None else str(text)

    def _adapted(self) -> Mapping[str, Any]:
        return getattr(self._obj, "adapted_properties", None) or {}

    def _extended(self) -> Mapping[str, Any]:
        return getattr(self._obj, "extended_properties", None) or {}


def adapt_value(value: Any) -> Any:
    """Wrap pypsrp complex objects (recursively through containers) as records."""

    if isinstance(value, GenericComplexObject):
        return PypsrpRecord(value)
    if isinstance(value, dict):
        return {key: adapt_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [adapt_value(item) for item in value]
    if isinstance(value, Queue):
        return [adapt_value(item) for item in value.queue]
    return value


def _collection_payload(payload: Any) -> list[Any] | dict[Any, Any] | None:
    if isinstance(payload, Queue):
        return list(payload.queue)
    if isinstance(payload, (list, tuple)):
        return list(payload)
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, str):
        return _deserialize_collection(payload)
    return None


def _deserialize_collection(text: str) -> list[Any] | dict[Any, Any] | None:
    """Deserialize a raw ``<LST>``/``<DCT>`` element left behind by pypsrp.

    pypsrp keeps untyped collection children of a dynamic object as XML text;
    wrapping them in a typed ``Obj`` lets its serializer produce the container.
    """

    try:
        element = ET.fromstring(text)
    except ET.ParseError:
        return None
    type_name = _COLLECTION_TYPES.get(element.tag)
    if type_name is None:
        return None
    if element.tag == "IE":
        element.tag = "LST"
    wrapper = ET.Element("Obj", RefId="0")
    type_names = ET.SubElement(wrapper, "TN", RefId="0")
    ET.SubElement(type_names, "T").text = type_name
    wrapper.append(element)
    try:
        value = Serializer().deserialize(wrapper)
    except KeyError:
        # items referencing objects outside this payload cannot be resolved
        LOG.debug("Unresolvable collection payload", extra={"tag": element.tag})
        return None
    if isinstance(value, Queue):
        return list(value.queue)
    if isinstance(value, (list, dict)):
        return value
    return None


def _reveal(value: object) -> object:
    if isinstance(value, Secret):
        return value.reveal()
    return value


class DemoRecord:
    """In-memory ``RawRecord`` used by the demo connector."""

    __slots__ = ("_values", "_display")

    def __init__(self, values: Mapping[str, object], display: str = "") -> None:
        self._values = dict(values)
        self._display = display

    def unwrap(self) -> object | None:
        return None

    def property_names(self) -> list[str]:
        return list(self._values)

    def read_property(self, name: str) -> object:
        return self._values[name]

    def __str__(self) -> str:
        return self._display


def _mailbox(name: str, alias: str, database: str, quota: str) -> DemoRecord:
    return DemoRecord(
        {
            "Name": name,
            "DisplayName": name,
            "Alias": alias,
            "PrimarySmtpAddress": f"{alias}@contoso.local",
            "EmailAddresses": [f"SMTP:{alias}@contoso.local", f"smtp:{alias}@contoso.mail.local"],
            "Database": DemoRecord({"Name": database, "Server": "EX01"}, display=database),
            "RecipientTypeDetails": DemoRecord({"Value": 1}, display="UserMailbox"),
            "ProhibitSendQuota": quota,
            "HiddenFromAddressListsEnabled": False,
            "OrganizationalUnit": "contoso.local/Users",
        },
        display=name,
    )


DEMO_DATASETS: Mapping[str, Sequence[DemoRecord]] = {
    "get-mailbox": (
        _mailbox("Alice Martin", "amartin", "DB01", "Unlimited"),
        _mailbox("Bruno Petit", "bpetit", "DB01", "2 GB (2,147,483,648 bytes)"),
        _mailbox("Chloe Bernard", "cbernard", "DB02", "Unlimited"),
    ),
    "get-mailboxdatabase": (
        DemoRecord({"Name": "DB01", "Server": "EX01", "Recovery": False}, display="DB01"),
        DemoRecord({"Name": "DB02", "Server": "EX01", "Recovery": False}, display="DB02"),
    ),
    "get-exchangeserver": (
        DemoRecord(
            {"Name": "EX01", "Fqdn": "ex01.contoso.local", "ServerRole": "Mailbox", "Edition": "Standard"},
            display="EX01",
        ),
    ),
    "get-accepteddomain": (
        DemoRecord({"Name": "contoso.local", "DomainName": "contoso.local", "Default": True}, display="contoso.local"),
    ),
}

_IDENTITY_KEYS = ("Name", "Alias", "PrimarySmtpAddress", "Fqdn", "DomainName")


class DemoConnector:
    """Offline connector serving canned mail-server records."""

    def __init__(self, datasets: Mapping[str, Sequence[DemoRecord]] | None = None) -> None:
        sources = datasets if datasets is not None else DEMO_DATASETS
        self._datasets = {name.lower(): tuple(records) for name, records in sources.items()}

    def open(
        self,
        target: ManagementTarget,
        credential: Credential,
        *,
        open_timeout: float,
        operation_timeout: float,
    ) -> DemoConnection:
        LOG.debug("Opening demo session", extra={"target": target.id})
        return DemoConnection(self._datasets)


class DemoConnection:
    """Evaluates the small subset of pipelines the demo datasets support."""

    def __init__(self, datasets: Mapping[str, Sequence[DemoRecord]]) -> None:
        self._datasets = datasets
        self.closed = False

    def run(self, pipeline: Pipeline, extra_parameters: Mapping[str, object]) -> RunOutcome:
        if not pipeline:
            return RunOutcome(())
        head, *rest = pipeline
        dataset = self._datasets.get(head.name.lower())
        if dataset is None:
            message = f"The term '{head.name}' is not recognized as the name of a cmdlet."
            return RunOutcome((), (message,))
        params = _named_values(head)
        records: list[DemoRecord] = list(dataset)
        identity = params.get("identity")
        if identity is not None:
            records = [record for record in records if _matches(record, str(identity))]
            if not records:
                message = f"The operation couldn't be performed because object '{identity}' couldn't be found."
                return RunOutcome((), (message,))
        result_size = params.get("resultsize")
        if isinstance(result_size, int) and not isinstance(result_size, bool):
            records = records[: max(result_size, 0)]
        for stage in rest:
            if stage.name.lower() != "select-object":
                return RunOutcome((), (f"'{stage.name}' is not supported by the demo connector.",))
            records = _select(records, stage)
        return RunOutcome(tuple(records))

    def close(self) -> None:
        self.closed = True


def _named_values(stage: CommandDescriptor) -> dict[str, object]:
    return {
        binding.key.lower(): binding.value
        for binding in stage.parameters
        if isinstance(binding, NamedParameter)
    }


def _matches(record: DemoRecord, identity: str) -> bool:
    wanted = identity.lower()
    for key in _IDENTITY_KEYS:
        if key in record.property_names() and str(record.read_property(key)).lower() == wanted:
            return True
    return False


def _select(records: Iterable[DemoRecord], stage: CommandDescriptor) -> list[DemoRecord]:
    params = _named_values(stage)
    columns: list[str] = []
    for binding in stage.parameters:
        if isinstance(binding, PositionalList):
            columns.extend(binding.values)
    prop = params.get("property")
    if isinstance(prop, tuple):
        columns.extend(prop)
    elif isinstance(prop, str):
        columns.append(prop)
    selected = list(records)
    first = params.get("first")
    if isinstance(first, int) and not isinstance(first, bool):
        selected = selected[: max(first, 0)]
    if not columns:
        return selected
    projected: list[DemoRecord] = []
    for record in selected:
        lookup = {name.lower(): name for name in record.property_names()}
        values: dict[str, object] = {}
        for column in columns:
            source = lookup.get(column.lower())
            values[source or column] = record.read_property(source) if source else None
        projected.append(DemoRecord(values, display=str(record)))
    return projected


__all__ = [
    "DEMO_DATASETS",
    "DemoConnection",
    "DemoConnector",
    "DemoRecord",
    "PypsrpConnection",
    "PypsrpConnector",
    "PypsrpRecord",
    "RemoteConnection",
    "RemoteConnector",
    "RunOutcome",
    "adapt_value",
]
