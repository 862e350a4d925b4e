"""
Bootstrap token manager.

Reconciles the current bootstrap token between the cloud provider (durable
copy) and the cluster (live secret):

    fetch current token -> decide -> mint or keep -> upsert cluster secret
    -> push to cloud (only if minted) -> report

A cluster failure aborts the cycle before anything is pushed to the cloud,
so the cloud never holds a token the cluster does not know.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from core.errors import (
    NotFoundError,
    TokenManagerError,
    classify_exception,
    is_fatal_error,
    is_retryable_error,
)
from core.logging.context import clear_cycle_id, set_log_context
from core.logging.setup import generate_cycle_id, get_logger
from core.logging.utilities import log_exception, log_with_context

from bootstrap_token_manager import __version__
from bootstrap_token_manager.api.health import HealthState
from bootstrap_token_manager.cloudprovider.base import CloudProvider
from bootstrap_token_manager.cluster import ClusterStore, SecretResource
from bootstrap_token_manager.config import Config
from bootstrap_token_manager.generator import TokenGenerator
from bootstrap_token_manager.metrics import TokenMetrics
from bootstrap_token_manager.policy import RenewalPolicy
from bootstrap_token_manager.token import BootstrapToken, format_rfc3339

logger = get_logger(__name__)

# Bootstrap token secret data keys
DATA_DESCRIPTION = "description"
DATA_TOKEN_ID = "token-id"
DATA_TOKEN_SECRET = "token-secret"
DATA_EXPIRATION = "expiration"
DATA_USAGE_AUTHENTICATION = "usage-bootstrap-authentication"
DATA_USAGE_SIGNING = "usage-bootstrap-signing"
DATA_AUTH_EXTRA_GROUPS = "auth-extra-groups"

# Upper bound on a server requested Retry-After delay between upsert attempts
MAX_RETRY_AFTER_SECONDS = 30.0


class SyncState(str, Enum):
    """Position of the manager within a sync cycle."""

    IDLE = "idle"
    FETCHING = "fetching"
    DECIDING = "deciding"
    MINTING = "minting"
    KEEPING = "keeping"
    UPSERTING = "upserting"
    PUSHING = "pushing"
    REPORTING = "reporting"


class BootstrapTokenManager:
    """
    Keeps one current bootstrap token in sync between cloud and cluster.

    Cycles run strictly sequentially on the calling thread. The health
    server only reads the HealthState and metrics registry.

    Usage:
        manager = BootstrapTokenManager(config, provider, store, metrics)
        exit_code = manager.run_once()

        stop = threading.Event()
        manager.run(stop)
    """

    def __init__(
        self,
        config: Config,
        cloud_provider: CloudProvider,
        cluster_store: ClusterStore,
        metrics: TokenMetrics,
        health_state: Optional[HealthState] = None,
        generator: Optional[TokenGenerator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.config = config
        self.cloud_provider = cloud_provider
        self.cluster_store = cluster_store
        self.metrics = metrics
        self.health_state = health_state or HealthState(dry_run=config.dry_run)
        self.dry_run = config.dry_run

        token_config = config.bootstrap_token
        self.generator = generator or TokenGenerator(
            id_template=token_config.id_template,
            token_length=token_config.token_length,
            token_runes=token_config.token_runes,
        )
        self.policy = RenewalPolicy(
            recreate_before=config.sync.recreate_before,
            enforce_expiration=token_config.enforce_expiration,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep or time.sleep
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    def _set_state(self, state: SyncState) -> None:
        self._state = state
        self.health_state.set_state(state.value)

    # -------------------------------------------------------------------------
    # Sync cycles
    # -------------------------------------------------------------------------

    def sync_once(self) -> BootstrapToken:
        """
        Run one incremental sync cycle.

        Returns:
            The token now present in the cluster

        Raises:
            TokenManagerError: On collaborator failure
        """
        self._set_state(SyncState.FETCHING)
        token = self.cloud_provider.fetch_token()

        self._set_state(SyncState.DECIDING)
        now = self._clock()

        if token is None:
            logger.info("No cloud token found, creating new one")
            return self._mint(now, taken=())

        log_with_context(
            logger,
            logging.INFO,
            f"Found cloud token '{token.id}' with expiration "
            f"{token.expiration_string(now)}",
            token_id=token.id,
        )

        if self.policy.should_renew(token, now):
            log_with_context(
                logger,
                logging.INFO,
                "Token is not valid or going to expire, starting renewal",
                token_id=token.id,
            )
            return self._mint(now, taken=(token.id,))

        self._set_state(SyncState.KEEPING)
        log_with_context(
            logger,
            logging.INFO,
            "Valid cloud token, syncing to cluster",
            token_id=token.id,
        )
        self.create_or_update_token(token, push_to_cloud=False)
        return token

    def _mint(self, now: datetime, taken) -> BootstrapToken:
        self._set_state(SyncState.MINTING)
        token = self.generator.new_token(
            now,
            expiration=self.config.bootstrap_token.expiration,
            taken=taken,
            is_taken=self._resource_exists,
        )
        log_with_context(
            logger,
            logging.INFO,
            f"Minted new token '{token.id}' with expiration "
            f"{token.expiration_string(now)}",
            token_id=token.id,
        )
        self.create_or_update_token(token, push_to_cloud=True)
        return token

    def _resource_exists(self, token_id: str) -> bool:
        """Whether a cluster secret already exists for a token id."""
        try:
            self.cluster_store.get(self.config.bootstrap_token.resource_name(token_id))
        except NotFoundError:
            return False
        return True

    def sync_full(self) -> List[BootstrapToken]:
        """
        Sync every recent valid cloud token into the cluster.

        Tokens due for renewal are skipped; nothing is pushed to the cloud.

        Returns:
            Tokens synced to the cluster
        """
        self._set_state(SyncState.FETCHING)
        tokens = self.cloud_provider.fetch_tokens()
        now = self._clock()

        synced = []
        for token in tokens:
            self._set_state(SyncState.DECIDING)
            log_with_context(
                logger,
                logging.INFO,
                f"Found cloud token '{token.id}' with expiration "
                f"{token.expiration_string(now)}",
                token_id=token.id,
            )
            if self.policy.should_renew(token, now):
                log_with_context(
                    logger,
                    logging.INFO,
                    "Token is not valid or going to expire, skipping",
                    token_id=token.id,
                )
                continue

            self._set_state(SyncState.KEEPING)
            self.create_or_update_token(token, push_to_cloud=False)
            synced.append(token)

        log_with_context(
            logger,
            logging.INFO,
            f"Full sync finished: {len(synced)} of {len(tokens)} tokens synced",
            tokens_found=len(tokens),
            tokens_synced=len(synced),
        )
        return synced

    # -------------------------------------------------------------------------
    # Upsert protocol
    # -------------------------------------------------------------------------

    def resource_name(self, token: BootstrapToken) -> str:
        return self.config.bootstrap_token.resource_name(token.id)

    def create_or_update_token(
        self, token: BootstrapToken, push_to_cloud: bool
    ) -> None:
        """
        Upsert the cluster secret for a token, then optionally push to cloud.

        The read-populate-write attempt is repeated on transient errors up
        to ``sync.retry_attempts`` times, waiting for a server sent
        Retry-After (capped at MAX_RETRY_AFTER_SECONDS) when there is one;
        any other error aborts at once.
        ``store_token`` runs once, only after the cluster write succeeded.
        """
        self._set_state(SyncState.UPSERTING)
        name = self.resource_name(token)
        max_attempts = max(1, self.config.sync.retry_attempts)

        attempt = 0
        while True:
            attempt += 1
            try:
                self._upsert_resource(name, token)
                break
            except TokenManagerError as e:
                if not is_retryable_error(e):
                    raise
                if attempt >= max_attempts:
                    log_exception(
                        logger,
                        e,
                        f"Giving up on cluster secret '{name}' after {attempt} attempts",
                        level=logging.WARNING,
                        include_traceback=False,
                        resource_name=name,
                        attempt=attempt,
                        max_attempts=max_attempts,
                    )
                    raise
                log_exception(
                    logger,
                    e,
                    f"Retrying cluster secret '{name}'",
                    level=logging.WARNING,
                    include_traceback=False,
                    resource_name=name,
                    attempt=attempt,
                    max_attempts=max_attempts,
                )
                retry_after = getattr(e, "retry_after", None)
                if retry_after:
                    self._sleep(min(retry_after, MAX_RETRY_AFTER_SECONDS))

        self.metrics.record_token(token)
        self.health_state.set_token(token.id, token.expiration_time)

        if not push_to_cloud:
            logger.debug("Not syncing token to cloud, not needed")
            return

        self._set_state(SyncState.PUSHING)
        if self.dry_run:
            log_with_context(
                logger,
                logging.INFO,
                "Dry run: skipping store of token to cloud provider",
                token_id=token.id,
                dry_run=True,
            )
            return
        self.cloud_provider.store_token(token)

    def _upsert_resource(self, name: str, token: BootstrapToken) -> None:
        namespace = self.config.bootstrap_token.namespace
        try:
            resource = self.cluster_store.get(name)
        except NotFoundError:
            resource = SecretResource(name=name, namespace=namespace)
            action = "create"
        else:
            action = "update"

        self.populate_resource(resource, token)

        log_with_context(
            logger,
            logging.INFO,
            f"{'Creating new' if action == 'create' else 'Updating existing'} "
            f"bootstrap token '{name}' with expiration {token.expiration_string()}",
            token_id=token.id,
            resource_name=name,
            namespace=namespace,
            action=action,
            dry_run=self.dry_run,
        )

        if self.dry_run:
            return
        if action == "create":
            self.cluster_store.create(resource)
        else:
            self.cluster_store.update(resource)

    def populate_resource(self, resource: SecretResource, token: BootstrapToken) -> None:
        """Write the bootstrap token fields into a cluster secret."""
        token_config = self.config.bootstrap_token

        resource.type = token_config.type
        resource.labels[token_config.label] = "true"

        data = resource.string_data
        data[DATA_DESCRIPTION] = f"Token maintained by kube-bootstrap-token-manager/{__version__}"
        data[DATA_TOKEN_ID] = token.id
        data[DATA_TOKEN_SECRET] = token.secret
        if token.expiration_time is not None:
            data[DATA_EXPIRATION] = format_rfc3339(token.expiration_time)
        else:
            data.pop(DATA_EXPIRATION, None)
        data[DATA_USAGE_AUTHENTICATION] = token_config.usage_bootstrap_authentication
        data[DATA_USAGE_SIGNING] = token_config.usage_bootstrap_signing
        data[DATA_AUTH_EXTRA_GROUPS] = token_config.auth_extra_groups

    # -------------------------------------------------------------------------
    # Reporting and loop
    # -------------------------------------------------------------------------

    def run_cycle(self) -> bool:
        """
        Run one reported sync cycle.

        Failures are logged and reflected in metrics and health state.
        Fatal errors are re-raised.

        Returns:
            True on success
        """
        cycle_id = generate_cycle_id()
        set_log_context(cycle_id=cycle_id)
        self.health_state.set_state(SyncState.FETCHING.value, cycle_id=cycle_id)
        started = time.monotonic()

        logger.info("Starting sync run")
        try:
            token = self.sync_once()
        except Exception as e:
            duration = time.monotonic() - started
            self._set_state(SyncState.REPORTING)
            category = classify_exception(e)
            self.metrics.record_sync_failure(category.value, duration=duration)
            self.health_state.set_cycle_error(str(e))
            log_exception(
                logger,
                e,
                "Sync run failed",
                error_category=category.value,
                duration_ms=round(duration * 1000),
            )
            if is_fatal_error(e):
                raise
            return False
        else:
            duration = time.monotonic() - started
            self._set_state(SyncState.REPORTING)
            self.metrics.record_sync_success(duration=duration)
            self.health_state.set_cycle_success()
            log_with_context(
                logger,
                logging.INFO,
                "Sync run finished",
                token_id=token.id,
                duration_ms=round(duration * 1000),
            )
            return True
        finally:
            self._state = SyncState.IDLE
            self.health_state.set_idle()
            clear_cycle_id()

    def run_full_sync(self) -> bool:
        """
        Run the full-sync pre-pass with error reporting.

        Returns:
            True on success
        """
        logger.info("Starting full sync run")
        try:
            self.sync_full()
        except Exception as e:
            log_exception(
                logger,
                e,
                "Full sync run failed",
                error_category=classify_exception(e).value,
            )
            if is_fatal_error(e):
                raise
            return False
        finally:
            self._state = SyncState.IDLE
            self.health_state.set_idle()
        return True

    def run_once(self) -> int:
        """
        Run a single pass (full sync when enabled, then one cycle).

        Returns:
            Process exit code (0 on success, 1 on failure)
        """
        ok = True
        if self.config.sync.full:
            ok = self.run_full_sync()
        ok = self.run_cycle() and ok
        return 0 if ok else 1

    def run(self, stop_event: threading.Event) -> None:
        """
        Run sync cycles until ``stop_event`` is set.

        A cycle in progress always completes; the stop event is checked
        between cycles. Cycle errors never stop the loop, fatal errors do.
        """
        interval = self.config.sync.time.total_seconds()

        log_with_context(
            logger,
            logging.INFO,
            f"Starting token manager (interval {self.config.sync.time}, "
            f"dry run {self.dry_run})",
            dry_run=self.dry_run,
        )

        if self.config.sync.full and not stop_event.is_set():
            self.run_full_sync()

        while not stop_event.is_set():
            self.run_cycle()
            if stop_event.wait(interval):
                break

        self.health_state.set_shutting_down()
        logger.info("Token manager stopped")
