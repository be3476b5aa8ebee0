import logging

import kopf
from kubernetes import client

from cloudsql_operator import constants
from cloudsql_operator.admission import PodHandler, PostgresqlInstanceHandler, Webhook
from cloudsql_operator.admission.postgresqlinstance import build_pipeline
from cloudsql_operator.admission.register import (
    build_webhook_configuration,
    ensure_webhook_configuration,
)
from cloudsql_operator.admission.tls import ensure_tls_secret
from cloudsql_operator.cloudsql import CloudSQLAdminClient
from cloudsql_operator.config import Configuration
from cloudsql_operator.controllers import PostgresqlInstanceController
from cloudsql_operator.crd.generator import CRDManager
from cloudsql_operator.handlers.postgresqlinstance_handler import register_resync
from cloudsql_operator.kube import load_kube_config

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str):
    logging.basicConfig(level=getattr(logging, level.upper()), format=LOG_FORMAT)


def build_cloudsql_client(config: Configuration) -> CloudSQLAdminClient:
    if config.gcp.admin_service_account_key_path:
        return CloudSQLAdminClient.from_service_account_file(
            config.gcp.admin_service_account_key_path, config.gcp.project_id
        )
    return CloudSQLAdminClient.from_default_credentials(config.gcp.project_id)


@kopf.on.startup()
def startup_fn(settings: kopf.OperatorSettings, memo: kopf.Memo, **kwargs):
    """Set up the admission webhook and the controller."""
    config: Configuration = memo.config
    logger.info(f"{constants.APPLICATION_NAME} is starting up...")

    settings.posting.enabled = True
    settings.batching.worker_limit = config.controllers.workers
    settings.persistence.finalizer = constants.FINALIZER
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(
        prefix=constants.GROUP
    )
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=constants.GROUP
    )

    load_kube_config(config.cluster.kubeconfig)
    core_api = client.CoreV1Api()
    custom_objects_api = client.CustomObjectsApi()
    admission_api = client.AdmissionregistrationV1Api()

    if config.cluster.manage_crds:
        CRDManager().ensure()

    cloudsql_client = build_cloudsql_client(config)
    namespace = config.cluster.namespace

    cert_pem, key_pem = ensure_tls_secret(
        core_api, namespace, config.admission.service_name
    )
    webhook = Webhook(
        [
            PostgresqlInstanceHandler(
                build_pipeline(cloudsql_client, cloudsql_client.project_id),
                custom_objects_api,
            ),
            PodHandler(
                core_api,
                custom_objects_api,
                namespace,
                config.admission.cloud_sql_proxy_image,
                config.read_client_credentials(),
            ),
        ],
        host=config.admission.host,
        port=config.admission.port,
    )
    webhook.start(cert_pem, key_pem)
    memo.webhook = webhook

    ensure_webhook_configuration(
        admission_api,
        build_webhook_configuration(config.admission.service_name, namespace, cert_pem),
    )

    memo.controller = PostgresqlInstanceController(
        custom_objects_api, core_api, cloudsql_client, namespace
    )
    logger.info(f"Worker limit: {settings.batching.worker_limit}")

    logger.info(f"{constants.APPLICATION_NAME} startup complete")


@kopf.on.cleanup()
def cleanup_fn(memo: kopf.Memo, **kwargs):
    """Drain the admission webhook."""
    logger.info(f"{constants.APPLICATION_NAME} is shutting down...")

    config: Configuration = memo.config
    grace_period = config.admission.shutdown_grace_period_seconds
    webhook = getattr(memo, "webhook", None)
    if webhook is not None:
        webhook.stop(grace_period=grace_period)

    logger.info(f"{constants.APPLICATION_NAME} shutdown complete")


def main(config: Configuration):
    configure_logging(config.logging.level)
    register_resync(config.controllers.resync_period_seconds)
    try:
        kopf.run(clusterwide=True, standalone=True, memo=kopf.Memo(config=config))
    except KeyboardInterrupt:
        logger.info("Operator stopped by user")
    except Exception as e:
        logger.error(f"Operator failed: {e}")
        raise
