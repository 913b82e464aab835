from ecsprovisioner._internal.utils.env import environ

REGION = environ.get_str("ECSPROVISIONER_REGION", default="")
CLUSTER_ID = environ.get_str("ECSPROVISIONER_CLUSTER_ID", default="")

# Burst capacity of the provisioning group creation limiter.
# The limiter refills one token per second.
PROVISIONING_GROUP_QPS = environ.get_int("ECSPROVISIONER_PROVISIONING_GROUP_QPS", default=100)
# Milliseconds, passed to the Alibaba Cloud SDK runtime options.
API_CONNECT_TIMEOUT = environ.get_int("ECSPROVISIONER_API_CONNECT_TIMEOUT", default=5000)
API_READ_TIMEOUT = environ.get_int("ECSPROVISIONER_API_READ_TIMEOUT", default=30000)

ROOT_LOG_LEVEL = environ.get_str("ECSPROVISIONER_ROOT_LOG_LEVEL", default="ERROR").upper()
LOG_LEVEL = environ.get_str("ECSPROVISIONER_LOG_LEVEL", default="INFO").upper()
LOG_FORMAT = environ.get_str("ECSPROVISIONER_LOG_FORMAT", default="standard").lower()
