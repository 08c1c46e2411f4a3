"""End-to-end tests for the bridge facade."""

from __future__ import annotations

import json

import pytest

from psbridge.audit import InvocationStatus
from psbridge.bridge import RemoteBridge
from psbridge.config import BridgeConfig, ManagementTargetConfig
from psbridge.connections import DemoConnector
from psbridge.errors import RemoteExecutionFailed, Unauthenticated
from psbridge.models import Credential, ManagementTarget, Secret
from psbridge.session import Session


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _bridge() -> RemoteBridge:
    return RemoteBridge(Session(DemoConnector()))


def test_unauthenticated_then_projection_after_credential() -> None:
    bridge = _bridge()

    with pytest.raises(Unauthenticated):
        bridge.run("Get-Mailbox -ResultSize 100 | Select-Object Name, Alias")

    bridge.set_credential(Credential(username="admin", password="pw"))
    records = bridge.run("Get-Mailbox -ResultSize 100 | Select-Object Name, Alias")

    assert records
    assert all(set(record) == {"Name", "Alias"} for record in records)
    assert json.dumps(records)


def test_run_records_audit_entries() -> None:
    bridge = _bridge()
    bridge.set_credential(Credential(username="admin", password="pw"))

    bridge.run("Get-Mailbox -Identity amartin")
    with pytest.raises(RemoteExecutionFailed):
        bridge.run("Get-Mailbox -Identity ghost")

    failed, completed = bridge.audit_log.entries()
    assert completed.command == "Get-Mailbox -Identity amartin"
    assert completed.status is InvocationStatus.COMPLETED
    assert failed.status is InvocationStatus.FAILED
    assert failed.error and "ghost" in failed.error


def test_extra_parameters_are_not_audited() -> None:
    bridge = _bridge()
    bridge.set_credential(Credential(username="admin", password="pw"))
    seen: list[str] = []
    bridge.subscribe(lambda event: seen.append(event.command))

    bridge.run("Get-ExchangeServer", {"Password": Secret("hunter2")})

    assert seen == ["Get-ExchangeServer", "Get-ExchangeServer"]
    assert all("hunter2" not in entry.command for entry in bridge.audit_log.entries())


def test_run_each_skips_failures() -> None:
    bridge = _bridge()
    bridge.set_credential(Credential(username="admin", password="pw"))

    records = bridge.run_each(["Get-MailboxDatabase", "Get-OwaVirtualDirectory", "Get-ExchangeServer"])

    assert [record["Name"] for record in records] == ["DB01", "DB02", "EX01"]


def test_test_connection_reports_without_raising() -> None:
    bridge = _bridge()

    report = bridge.test_connection()
    assert report.success is False
    assert report.message.startswith("Error:")

    bridge.set_credential(Credential(username="admin", password="pw"))
    report = bridge.test_connection()
    assert report.success is True
    assert report.record_count == 1


def test_set_target_reconnects_and_close_releases() -> None:
    bridge = _bridge()
    bridge.set_credential(Credential(username="admin", password="pw"))
    bridge.run("Get-AcceptedDomain")
    assert bridge.session.is_open is True

    bridge.set_target(ManagementTarget(id="dr", server_fqdn="ex02.contoso.local"))
    assert bridge.session.is_open is False
    bridge.run("Get-AcceptedDomain")
    assert bridge.session.target.id == "dr"

    bridge.close()
    assert bridge.session.is_open is False
    assert bridge.session.has_credential is False


def test_from_config_uses_demo_mode_and_active_target() -> None:
    config = BridgeConfig(
        targets=[ManagementTargetConfig(id="main"), ManagementTargetConfig(id="dr")],
        active_target="dr",
        demo_mode=True,
    )

    bridge = RemoteBridge.from_config(config)
    bridge.set_credential(Credential(username="admin", password="pw"))

    assert bridge.session.target.id == "dr"
    assert bridge.run("Get-ExchangeServer | Select-Object Name, Fqdn") == [
        {"Name": "EX01", "Fqdn": "ex01.contoso.local"}
    ]


@pytest.mark.anyio
async def test_arun_runs_on_worker_thread() -> None:
    bridge = _bridge()
    bridge.set_credential(Credential(username="admin", password="pw"))

    records = await bridge.arun("Get-Mailbox -ResultSize 1 | Select-Object PrimarySmtpAddress")

    assert records == [{"PrimarySmtpAddress": "amartin@contoso.local"}]
