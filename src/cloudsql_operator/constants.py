"""Names and keys shared by the admission webhook and the controller."""

APPLICATION_NAME = "cloudsql-postgres-operator"
DEFAULT_NAMESPACE = "cloudsql-postgres-operator"
DEFAULT_WEBHOOK_BIND_ADDRESS = "0.0.0.0:443"
DEFAULT_CLOUD_SQL_PROXY_IMAGE = "gcr.io/cloudsql-docker/gce-proxy:1.14"

GROUP = "cloudsql.travelaudience.com"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"
KIND = "PostgresqlInstance"
PLURAL = "postgresqlinstances"
SINGULAR = "postgresqlinstance"

ANNOTATION_PREFIX = f"{GROUP}/"
ALLOW_DELETION_ANNOTATION = ANNOTATION_PREFIX + "allow-deletion"
POSTGRESQL_INSTANCE_NAME_ANNOTATION = ANNOTATION_PREFIX + "postgresqlinstance-name"
PROXY_INJECTED_ANNOTATION = ANNOTATION_PREFIX + "proxy-injected"

FINALIZER = ANNOTATION_PREFIX + "cleanup"

LABEL_APP_KEY = "app"

# Keys of the per-instance credentials secret.
USERNAME_KEY = "username"
PASSWORD_KEY = "password"
SUPERUSER_NAME = "postgres"

TRUE = "true"
FALSE = "false"

# Cloud SQL Admin API values.
OPERATION_STATUS_DONE = "DONE"
INSTANCE_STATE_RUNNABLE = "RUNNABLE"
ACTIVATION_POLICY_ALWAYS = "ALWAYS"
IP_ADDRESS_TYPE_PUBLIC = "PRIMARY"
IP_ADDRESS_TYPE_PRIVATE = "PRIVATE"
