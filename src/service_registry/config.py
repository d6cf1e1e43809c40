"""
This module defines the configuration settings for the service registry.

It uses Pydantic's `BaseSettings` to create a strongly-typed settings object
populated from environment variables prefixed with `SERVICE_REGISTRY_`. The
settings cover the etcd endpoints, the TTL lease applied to every record
write, the retry budgets used to hide propagation lag, the change watcher's
reconnect policy and the HTTP API binding.
"""
from typing import List, Optional

from pydantic_settings import BaseSettings

DEFAULT_TTL_SECONDS = 120
SERVICES_KEY = "services"
SERVICES_OPTIONS_KEY = "services-options"


class RegistrySettings(BaseSettings):
    """
    Configuration model for the service registry.

    Attributes:
        etcd_hosts: Comma separated etcd client URLs, tried in order.
        ttl: Lease duration in seconds applied to every record write.
        services_key: Namespace segment holding service records.
        options_key: Namespace segment holding per-name options.
        request_timeout: Per-request timeout in seconds for store calls.
        max_retries: Rounds over all endpoints before a write is abandoned.
        lookup_attempts: Attempts for a direct store lookup on a cache miss.
        lookup_delay: Fixed delay in seconds between lookup attempts.
        options_attempts: Attempts when resolving service options.
        options_delay_step: Linear delay step in seconds for options lookups.
        watch_reconnect_delay: Base delay before the watcher resubscribes.
        watch_reconnect_max_delay: Upper bound on the watcher reconnect delay.
        watch_max_reconnects: Consecutive failures tolerated before the
                              watcher stops; unset retries forever.
        heartbeat_interval: Renewal period for heartbeats; defaults to ttl/3.
        api_host: Interface the HTTP API binds to.
        api_port: Port the HTTP API listens on.
        log_level: Root log level name for the API process.
        log_format: `logging` format string for the API process.
    """

    # Store
    etcd_hosts: str = "http://127.0.0.1:2379"
    request_timeout: float = 5.0
    max_retries: int = 3

    # Liveness
    ttl: int = DEFAULT_TTL_SECONDS
    heartbeat_interval: Optional[float] = None

    # Namespace layout
    services_key: str = SERVICES_KEY
    options_key: str = SERVICES_OPTIONS_KEY

    # Retry budgets
    lookup_attempts: int = 6
    lookup_delay: float = 0.1
    options_attempts: int = 10
    options_delay_step: float = 0.1

    # Change watcher
    watch_reconnect_delay: float = 1.0
    watch_reconnect_max_delay: float = 30.0
    watch_max_reconnects: Optional[int] = None

    # Server
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

    class Config:
        env_prefix = "SERVICE_REGISTRY_"

    @property
    def hosts(self) -> List[str]:
        return [host.strip().rstrip("/") for host in self.etcd_hosts.split(",") if host.strip()]

    @property
    def renew_interval(self) -> float:
        if self.heartbeat_interval is not None and self.heartbeat_interval > 0:
            return self.heartbeat_interval
        return max(0.1, self.ttl / 3)
