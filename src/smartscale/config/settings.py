#!/usr/bin/env python3
"""
Configuration settings using Pydantic for environment variable loading
"""

import os
from typing import Optional, Dict, Any, List

from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


def _split_csv(value: Optional[str]) -> List[str]:
    """Split a comma separated environment value, dropping blanks"""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class RedisSettings(BaseSettings):
    """Redis configuration settings (cluster state store)"""
    host: str = os.getenv("REDIS_HOST", "localhost")
    port: int = int(os.getenv("REDIS_PORT", "6379"))
    db: int = int(os.getenv("REDIS_DB", "0"))
    password: Optional[str] = os.getenv("REDIS_PASSWORD", None)
    connection_timeout: int = int(os.getenv("REDIS_CONNECTION_TIMEOUT", "5"))
    key_prefix: str = os.getenv("REDIS_KEY_PREFIX", "smartscale:")

    class Config:
        extra = "ignore"


class KubernetesSettings(BaseSettings):
    """Kubernetes configuration settings"""
    in_cluster: bool = os.getenv("KUBERNETES_IN_CLUSTER", "false").lower() == "true"
    kubeconfig_path: Optional[str] = os.getenv("KUBECONFIG_PATH")
    # Direct API access with a bearer token fetched from the blob store
    api_server: Optional[str] = os.getenv("K3S_API_SERVER")
    token_key: str = os.getenv("K3S_API_TOKEN_KEY", "api-token")
    verify_ssl: bool = os.getenv("K3S_VERIFY_SSL", "false").lower() == "true"
    request_timeout: int = int(os.getenv("KUBERNETES_REQUEST_TIMEOUT", "10"))

    class Config:
        extra = "ignore"


class AWSSettings(BaseSettings):
    """AWS configuration settings (EC2 workers and S3 config bucket)"""
    region: str = os.getenv("AWS_REGION", "ap-southeast-1")
    ec2_endpoint: Optional[str] = os.getenv("EC2_ENDPOINT") or None
    s3_endpoint: Optional[str] = os.getenv("S3_ENDPOINT") or None
    cluster_id: str = os.getenv("CLUSTER_ID", "k3s-demo")
    ami_id: str = os.getenv("AMI_ID", "")
    instance_type: str = os.getenv("WORKER_INSTANCE_TYPE", "t3.small")
    # Comma separated; order is the zone tie-break order for placement
    subnet_ids: str = os.getenv("WORKER_SUBNET_IDS", "")
    security_group_id: str = os.getenv("SECURITY_GROUP_ID", "")
    iam_instance_profile: Optional[str] = os.getenv("IAM_INSTANCE_PROFILE") or None
    config_bucket: str = os.getenv("CONFIG_BUCKET", "")
    join_token_key: str = os.getenv("JOIN_TOKEN_KEY", "node-token")
    master_address: str = os.getenv("MASTER_PRIVATE_IP", os.getenv("MASTER_IP", ""))

    class Config:
        extra = "ignore"

    @property
    def worker_subnet_ids(self) -> List[str]:
        return _split_csv(self.subnet_ids)


class PrometheusSettings(BaseSettings):
    """Prometheus configuration settings"""
    url: str = os.getenv("PROMETHEUS_URL", "http://localhost:30090")
    query_timeout: int = int(os.getenv("PROMETHEUS_QUERY_TIMEOUT", "5"))
    cpu_query: str = os.getenv(
        "PROMETHEUS_CPU_QUERY",
        '100 - (avg(rate(node_cpu_seconds_total{mode="idle"}[2m])) * 100)'
    )
    pending_query: str = os.getenv(
        "PROMETHEUS_PENDING_QUERY",
        'sum(kube_pod_status_phase{phase="Pending"})'
    )

    class Config:
        extra = "ignore"


class AutoscalerSettings(BaseSettings):
    """Main autoscaler configuration settings"""
    check_interval: int = int(os.getenv("AUTOSCALER_CHECK_INTERVAL", "60"))
    dry_run: bool = os.getenv("AUTOSCALER_DRY_RUN", "false").lower() == "true"

    # API settings
    api_host: str = os.getenv("AUTOSCALER_API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("AUTOSCALER_API_PORT", "8080"))
    metrics_port: int = int(os.getenv("AUTOSCALER_METRICS_PORT", "9091"))

    # Threshold settings
    cpu_threshold_up: float = float(os.getenv("SCALE_UP_CPU_THRESHOLD", "70.0"))
    cpu_threshold_down: float = float(os.getenv("SCALE_DOWN_CPU_THRESHOLD", "30.0"))
    pending_work_threshold: int = int(os.getenv("PENDING_WORK_THRESHOLD", "1"))

    # Limit settings
    min_nodes: int = int(os.getenv("MIN_NODES", "2"))
    max_nodes: int = int(os.getenv("MAX_NODES", "10"))
    scale_up_cooldown: int = int(os.getenv("SCALE_UP_COOLDOWN", "300"))
    scale_down_cooldown: int = int(os.getenv("SCALE_DOWN_COOLDOWN", "600"))

    # Coordination settings
    action_verification_timeout: int = int(os.getenv("ACTION_VERIFICATION_TIMEOUT", "600"))
    lock_ttl: int = int(os.getenv("LOCK_TTL", "300"))
    drain_grace_period: int = int(os.getenv("DRAIN_GRACE_PERIOD", "10"))

    # External call policy
    call_timeout: float = float(os.getenv("CALL_TIMEOUT", "10"))
    call_attempts: int = int(os.getenv("CALL_ATTEMPTS", "2"))

    class Config:
        extra = "ignore"


class LoggingSettings(BaseSettings):
    """Logging configuration settings"""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    file: Optional[str] = os.getenv("LOG_FILE", None)
    enable_colors: bool = os.getenv("LOG_COLORS", "true").lower() == "true"

    class Config:
        extra = "ignore"


class Settings(BaseSettings):
    """Main settings class that includes all sub-settings"""
    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Component settings
    redis: RedisSettings = Field(default_factory=RedisSettings)
    kubernetes: KubernetesSettings = Field(default_factory=KubernetesSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)
    prometheus: PrometheusSettings = Field(default_factory=PrometheusSettings)
    autoscaler: AutoscalerSettings = Field(default_factory=AutoscalerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields to avoid validation errors

    def get_public_config(self) -> Dict[str, Any]:
        """Thresholds and limits safe to expose over the API"""
        return {
            "check_interval": self.autoscaler.check_interval,
            "dry_run": self.autoscaler.dry_run,
            "cluster_id": self.aws.cluster_id,
            "thresholds": {
                "cpu_scale_up": self.autoscaler.cpu_threshold_up,
                "cpu_scale_down": self.autoscaler.cpu_threshold_down,
                "pending_work": self.autoscaler.pending_work_threshold
            },
            "limits": {
                "min_nodes": self.autoscaler.min_nodes,
                "max_nodes": self.autoscaler.max_nodes,
                "scale_up_cooldown": self.autoscaler.scale_up_cooldown,
                "scale_down_cooldown": self.autoscaler.scale_down_cooldown
            },
            "coordination": {
                "action_verification_timeout": self.autoscaler.action_verification_timeout,
                "lock_ttl": self.autoscaler.lock_ttl,
                "drain_grace_period": self.autoscaler.drain_grace_period
            }
        }

    @classmethod
    def load_from_yaml_with_env_override(cls, yaml_path: str) -> "Settings":
        """Load settings from YAML file and override with environment variables"""
        import yaml

        # Load YAML if it exists
        yaml_config = {}
        if os.path.exists(yaml_path):
            with open(yaml_path, 'r') as f:
                # Process environment variables in YAML
                yaml_content = f.read()
                for key, value in os.environ.items():
                    yaml_content = yaml_content.replace(f"${{{key}}}", value)
                yaml_config = yaml.safe_load(yaml_content) or {}

        aws_config = dict(yaml_config.get("aws", {}))
        if isinstance(aws_config.get("subnet_ids"), list):
            aws_config["subnet_ids"] = ",".join(aws_config["subnet_ids"])

        return Settings(
            environment=yaml_config.get("environment", "development"),
            debug=yaml_config.get("debug", False),
            redis=RedisSettings(**yaml_config.get("redis", {})),
            kubernetes=KubernetesSettings(**yaml_config.get("kubernetes", {})),
            aws=AWSSettings(**aws_config),
            prometheus=PrometheusSettings(**yaml_config.get("prometheus", {})),
            autoscaler=AutoscalerSettings(**yaml_config.get("autoscaler", {})),
            logging=LoggingSettings(**yaml_config.get("logging", {}))
        )


# Global settings instance
settings = Settings()
