"""Archive storage driver factory."""

from typing import Optional

from flexo_api.config import Settings, settings
from flexo_api.storage.base import BaseStorageDriver, StorageError
from flexo_api.storage.local_driver import LocalStorageDriver
from flexo_api.storage.s3_driver import S3StorageDriver


def get_storage_driver(config: Optional[Settings] = None) -> BaseStorageDriver:
    """Get the snapshot archive storage driver.

    Args:
        config: Settings to read from (defaults to application settings)

    Returns:
        Configured storage driver instance

    Raises:
        StorageError: If the provider is not supported or misconfigured
    """
    config = config or settings
    return get_storage_driver_from_config(
        provider=config.snapshot_storage_provider,
        base_path=config.snapshot_storage_path,
        credentials={
            "bucket_name": config.snapshot_s3_bucket,
            "region": config.snapshot_s3_region,
            "endpoint_url": config.snapshot_s3_endpoint_url,
            "aws_access_key_id": config.snapshot_s3_access_key_id,
            "aws_secret_access_key": config.snapshot_s3_secret_access_key,
        },
    )


def get_storage_driver_from_config(
    provider: str, base_path: str, credentials: Optional[dict] = None
) -> BaseStorageDriver:
    """Get storage driver from explicit configuration.

    Args:
        provider: Storage provider (local, s3)
        base_path: Directory (local) or key prefix (s3)
        credentials: Optional S3 settings

    Returns:
        Configured storage driver instance

    Example:
        >>> driver = get_storage_driver_from_config(
        ...     provider="local",
        ...     base_path="/tmp/backups"
        ... )
    """
    driver_config = {"base_path": base_path}

    if credentials:
        driver_config.update({key: value for key, value in credentials.items() if value is not None})

    provider = provider.lower()

    if provider == "local":
        return LocalStorageDriver(driver_config)
    elif provider == "s3":
        required_fields = ["aws_access_key_id", "aws_secret_access_key", "bucket_name"]
        missing = [f for f in required_fields if f not in driver_config]
        if missing:
            raise StorageError(f"Missing required S3 configuration: {missing}")
        return S3StorageDriver(driver_config)
    else:
        raise StorageError(f"Unsupported storage provider: {provider}")
