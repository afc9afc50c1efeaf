# range_controller/config.py
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from range_controller.exceptions import ConfigError

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_PATH = PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # proxmox cluster
    proxmox_server: str = Field("", validation_alias="PROXMOX_SERVER")
    proxmox_port: int = Field(443, validation_alias="PROXMOX_PORT")
    proxmox_token_id: str = Field("", validation_alias="PROXMOX_TOKEN_ID")
    proxmox_token_secret: str = Field("", validation_alias="PROXMOX_TOKEN_SECRET")
    proxmox_verify_ssl: bool = Field(False, validation_alias="PROXMOX_VERIFY_SSL")
    proxmox_nodes: str = Field("", validation_alias="PROXMOX_NODES")
    proxmox_realm: str = Field("SDC", validation_alias="PROXMOX_REALM")
    proxmox_timeout: float = Field(30.0, validation_alias="PROXMOX_TIMEOUT")
    storage_id: str = Field("", validation_alias="STORAGE_ID")

    # pod layout
    router_name: str = Field("1-1NAT-pfsense", validation_alias="ROUTER_NAME")
    router_pool: str = Field("0100_Kamino_Templates", validation_alias="ROUTER_POOL")
    sdn_zone: str = Field("MainZone", validation_alias="SDN_ZONE")
    pod_roles: str = Field("PVEVMUser,PVEPoolUser", validation_alias="POD_ROLES")
    wan_script: str = Field("/home/update-wan-ip.sh", validation_alias="ROUTER_WAN_SCRIPT")
    vip_script: str = Field("/home/update-wan-vip.sh", validation_alias="ROUTER_VIP_SCRIPT")

    # wait budgets, seconds
    lock_ttl: float = Field(60.0, validation_alias="LOCK_TTL")
    lock_max_attempts: int = Field(9, validation_alias="LOCK_MAX_ATTEMPTS")
    lock_initial_backoff: float = Field(0.1, validation_alias="LOCK_INITIAL_BACKOFF")
    clone_timeout: float = Field(300.0, validation_alias="CLONE_TIMEOUT")
    disk_timeout: float = Field(300.0, validation_alias="DISK_TIMEOUT")
    agent_timeout: float = Field(300.0, validation_alias="AGENT_TIMEOUT")
    power_timeout: float = Field(120.0, validation_alias="POWER_TIMEOUT")
    pool_empty_timeout: float = Field(300.0, validation_alias="POOL_EMPTY_TIMEOUT")
    bulk_workers: int = Field(8, validation_alias="BULK_WORKERS")

    # redis / celery / database
    redis_url: str = Field("redis://localhost:6379/0", validation_alias="REDIS_URL")
    database_url: str = Field("sqlite:///./mini_range.db", validation_alias="DATABASE_URL")
    job_runner: str = Field("celery", validation_alias="JOB_RUNNER")

    # api
    controller_token: str = Field("", validation_alias="CONTROLLER_TOKEN")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")


@dataclass(frozen=True)
class ClusterConfig:
    """Connection details for one hypervisor cluster, fixed for a request's lifetime."""

    host: str
    port: int
    token_id: str
    token_secret: str
    verify_ssl: bool
    nodes: Tuple[str, ...]

    @property
    def base_url(self) -> str:
        return f"https://{self.host}:{self.port}/api2/json"

    @property
    def auth_header(self) -> str:
        return f"PVEAPIToken={self.token_id}={self.token_secret}"


def load_cluster_config(settings: Settings) -> ClusterConfig:
    missing = [
        name
        for name, value in (
            ("PROXMOX_SERVER", settings.proxmox_server),
            ("PROXMOX_TOKEN_ID", settings.proxmox_token_id),
            ("PROXMOX_TOKEN_SECRET", settings.proxmox_token_secret),
            ("PROXMOX_NODES", settings.proxmox_nodes),
        )
        if not str(value).strip()
    ]
    if missing:
        raise ConfigError(f"missing required environment values: {', '.join(missing)}")

    nodes = tuple(n.strip() for n in settings.proxmox_nodes.split(",") if n.strip())
    if not nodes:
        raise ConfigError("PROXMOX_NODES does not name any compute node")

    return ClusterConfig(
        host=settings.proxmox_server.strip(),
        port=settings.proxmox_port,
        token_id=settings.proxmox_token_id.strip(),
        token_secret=settings.proxmox_token_secret.strip(),
        verify_ssl=settings.proxmox_verify_ssl,
        nodes=nodes,
    )


# single settings instance imported elsewhere
settings = Settings()
