"""kopf handlers reconciling PostgresqlInstance resources."""

import logging

import kopf

from cloudsql_operator import constants

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 10.0


def get_controller(memo: kopf.Memo):
    """Get the PostgresqlInstanceController created at startup.
    """
    controller = getattr(memo, "controller", None)
    if controller is None:
        raise kopf.TemporaryError("the controller is not initialised yet", delay=5)
    return controller


def retry_delay(memo: kopf.Memo) -> float:
    config = getattr(memo, "config", None)
    if config is None:
        return DEFAULT_RETRY_DELAY
    return config.controllers.retry_delay_seconds


@kopf.on.resume(constants.GROUP, constants.VERSION, constants.PLURAL)
@kopf.on.create(constants.GROUP, constants.VERSION, constants.PLURAL)
@kopf.on.update(constants.GROUP, constants.VERSION, constants.PLURAL)
def sync_postgresqlinstance(body, memo: kopf.Memo, **kwargs):
    """Reconcile a PostgresqlInstance with its Cloud SQL instance.

    Failures are retried by kopf after the configured delay.
    """
    controller = get_controller(memo)
    name = body["metadata"]["name"]
    try:
        controller.sync(body)
    except Exception as e:
        logger.error(f"[postgresqlinstance={name}] Failed to sync: {e}")
        raise kopf.TemporaryError(
            f"failed to sync postgresqlinstance {name}: {e}", delay=retry_delay(memo)
        ) from e


def resync_postgresqlinstance(body, memo: kopf.Memo, **kwargs):
    """Periodic reconciliation, so that pending operations and drift resolve without edits.
    """
    sync_postgresqlinstance(body, memo, **kwargs)


@kopf.on.delete(constants.GROUP, constants.VERSION, constants.PLURAL)
def delete_postgresqlinstance(body, memo: kopf.Memo, **kwargs):
    """Delete the Cloud SQL instance; kopf removes the finalizer on success.
    """
    controller = get_controller(memo)
    name = body["metadata"]["name"]
    try:
        controller.finalize(body)
    except Exception as e:
        logger.error(f"[postgresqlinstance={name}] Failed to finalize: {e}")
        raise kopf.TemporaryError(
            f"failed to delete the instance of postgresqlinstance {name}: {e}",
            delay=retry_delay(memo),
        ) from e


def register_resync(interval: float):
    """Register the periodic resync of every PostgresqlInstance.

    The interval comes from the configuration, so the timer is registered
    once the configuration is loaded rather than at import time.
    """
    if interval <= 0:
        logger.info("Periodic resync of postgresqlinstances is disabled")
        return
    kopf.timer(
        constants.GROUP,
        constants.VERSION,
        constants.PLURAL,
        interval=interval,
        initial_delay=interval,
    )(resync_postgresqlinstance)
    logger.info(f"Resyncing postgresqlinstances every {interval}s")
