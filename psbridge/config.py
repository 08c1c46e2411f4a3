"""Bridge configuration loading helpers."""

from __future__ import annotations

from pathlib import Path

import tomllib

from pydantic import BaseModel, Field

from .models import AuthMechanism, ManagementTarget

CONFIG_FILE = Path.home() / ".config" / "psbridge" / "config.toml"


class ManagementTargetConfig(BaseModel):
    """Management endpoint stored in config.toml."""

    id: str
    label: str = ""
    version: str = ""
    server_fqdn: str = "localhost"
    connection_uri: str = ""
    configuration_name: str = "Microsoft.Exchange"
    authentication: AuthMechanism = AuthMechanism.KERBEROS
    use_ssl: bool = False
    cert_validation: bool = False

    def to_target(self) -> ManagementTarget:
        return ManagementTarget(
            id=self.id,
            label=self.label or self.id,
            version=self.version,
            server_fqdn=self.server_fqdn,
            connection_uri=self.connection_uri,
            configuration_name=self.configuration_name,
            authentication=self.authentication,
            use_ssl=self.use_ssl,
            cert_validation=self.cert_validation,
        )


class BridgeConfig(BaseModel):
    """Shape of the bridge configuration file."""

    targets: list[ManagementTargetConfig] = Field(default_factory=list)
    active_target: str | None = None
    open_timeout: float = 30.0
    operation_timeout: float = 60.0
    demo_mode: bool = False

    def resolve_target(self, target_id: str | None = None) -> ManagementTarget:
        """Return the requested, active or first configured target.

        Falls back to a default local target when nothing is configured.
        """

        wanted = target_id or self.active_target
        if wanted:
            for entry in self.targets:
                if entry.id == wanted:
                    return entry.to_target()
            if target_id:
                raise ValueError(f"Management target '{target_id}' not found.")
        if self.targets:
            return self.targets[0].to_target()
        return ManagementTarget()

    def with_active_target(self, target_id: str) -> BridgeConfig:
        """Return a copy with the active target updated."""

        return self.model_copy(update={"active_target": target_id})


def load_config() -> BridgeConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return BridgeConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return BridgeConfig()

    targets_data = data.get("targets")
    targets: list[ManagementTargetConfig] = []
    if isinstance(targets_data, list):
        targets = [
            ManagementTargetConfig(**target)
            for target in targets_data  # type: ignore[list-item]
            if isinstance(target, dict)
        ]

    defaults = BridgeConfig.model_fields
    return BridgeConfig(
        targets=targets,
        active_target=data.get("active_target"),
        open_timeout=data.get("open_timeout", defaults["open_timeout"].default),
        operation_timeout=data.get("operation_timeout", defaults["operation_timeout"].default),
        demo_mode=data.get("demo_mode", defaults["demo_mode"].default),
    )


def save_config(config: BridgeConfig) -> None:
    """Persist configuration to disk. Credentials are never written."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f"open_timeout = {config.open_timeout}",
        f"operation_timeout = {config.operation_timeout}",
        f"demo_mode = {str(config.demo_mode).lower()}",
    ]
    if config.active_target:
        lines.append(f'active_target = "{config.active_target}"')
    if config.targets:
        lines.append("")
        for target in config.targets:
            lines.append("[[targets]]")
            lines.append(f'id = "{target.id}"')
            for key in ("label", "version", "server_fqdn", "connection_uri", "configuration_name"):
                value = getattr(target, key)
                if value:
                    lines.append(f'{key} = "{value}"')
            lines.append(f'authentication = "{target.authentication.value}"')
            lines.append(f"use_ssl = {str(target.use_ssl).lower()}")
            lines.append(f"cert_validation = {str(target.cert_validation).lower()}")
            lines.append("")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if not isinstance(raw, dict):
        return data
    active = raw.get("active_target")
    if isinstance(active, str):
        data["active_target"] = active
    for key in ("open_timeout", "operation_timeout"):
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            data[key] = float(value)
    demo_mode = raw.get("demo_mode")
    if isinstance(demo_mode, bool):
        data["demo_mode"] = demo_mode
    targets = raw.get("targets")
    if isinstance(targets, list):
        parsed_targets: list[dict[str, object]] = []
        for target in targets:
            if not isinstance(target, dict):
                continue
            parsed: dict[str, object] = {}
            for key in ("id", "label", "version", "server_fqdn", "connection_uri", "configuration_name"):
                value = target.get(key)
                if isinstance(value, str):
                    parsed[key] = value
            authentication = target.get("authentication")
            if isinstance(authentication, str):
                parsed["authentication"] = AuthMechanism.parse(authentication)
            for key in ("use_ssl", "cert_validation"):
                flag = target.get(key)
                if isinstance(flag, bool):
                    parsed[key] = flag
            if parsed.get("id"):
                parsed_targets.append(parsed)
        if parsed_targets:
            data["targets"] = parsed_targets
    return data


__all__ = [
    "BridgeConfig",
    "CONFIG_FILE",
    "ManagementTargetConfig",
    "load_config",
    "save_config",
]
