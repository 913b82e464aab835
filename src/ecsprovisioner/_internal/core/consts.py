API_GROUP = "karpenter.k8s.alibabacloud"

# Well-known labels
CAPACITY_TYPE_LABEL = "karpenter.sh/capacity-type"
NODEPOOL_LABEL = "karpenter.sh/nodepool"
ZONE_LABEL = "topology.kubernetes.io/zone"
INSTANCE_TYPE_LABEL = "node.kubernetes.io/instance-type"
INSTANCE_SIZE_LABEL = f"{API_GROUP}/instance-size"
NODE_CLASS_LABEL = f"{API_GROUP}/ecsnodeclass"

# Tags
ECS_CLUSTER_ID_TAG = "ack.aliyun.com"
PROVISIONING_GROUP_TAG = f"{API_GROUP}/autoprovisiongroup"


def cluster_ownership_tag(cluster_id: str) -> str:
    return f"kubernetes.io/cluster/{cluster_id}"


CLUSTER_OWNERSHIP_TAG_VALUE = "owned"
