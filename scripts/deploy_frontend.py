#!/usr/bin/env python3
"""
deploy_frontend.py — Deploy the built SPA to S3 and invalidate CloudFront.

Replaces the whole bucket contents with the build output directory:
every existing object is deleted, then every local file is uploaded under
its path relative to the build directory.

Cache headers:
  assets/*   public, max-age=31536000, immutable  (content-hashed bundles)
  otherwise  public, max-age=0, must-revalidate

Creates a CloudFront invalidation for /* when AWS_CLOUDFRONT_DISTRIBUTION_ID
is set; skipped with a warning otherwise.

Configuration (environment, then .env.local / .env in the working directory):
  AWS_S3_BUCKET                    required
  AWS_REGION                       default us-east-1
  AWS_CLOUDFRONT_DISTRIBUTION_ID   optional

Usage:
    uv run python scripts/deploy_frontend.py [--build-dir dist]
"""

from __future__ import annotations

import argparse
import logging
import mimetypes
import os
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import boto3

logger = logging.getLogger("deploy_frontend")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

DEFAULT_REGION = "us-east-1"
DEFAULT_BUILD_DIR = "dist"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
# mimetypes reports .gz/.br/... as an encoding of the inner type.
ENCODING_CONTENT_TYPES: dict[str, str] = {
    "gzip": "application/gzip",
    "br": "application/x-brotli",
    "bzip2": "application/x-bzip2",
    "xz": "application/x-xz",
    "compress": "application/x-compress",
}

ASSETS_PREFIX = "assets/"
CACHE_CONTROL_IMMUTABLE = "public, max-age=31536000, immutable"
CACHE_CONTROL_REVALIDATE = "public, max-age=0, must-revalidate"

INVALIDATION_PATHS: tuple[str, ...] = ("/*",)
DOTENV_FILES: tuple[str, ...] = (".env.local", ".env")


class DeployError(RuntimeError):
    """Raised when a deploy precondition fails or S3 rejects part of a batch."""


@dataclass(frozen=True)
class DeployConfig:
    bucket: str
    region: str
    build_dir: Path
    distribution_id: str | None = None


@dataclass
class DeployResult:
    bucket: str
    region: str
    deleted: int = 0
    uploaded: list[str] = field(default_factory=list)
    invalidation_id: str | None = None

    @property
    def website_url(self) -> str:
        return f"https://{self.bucket}.s3-website-{self.region}.amazonaws.com"


def _load_dotenv_values(cwd: Path) -> dict[str, str]:
    """Read KEY=VALUE pairs from .env.local and .env; earlier files win."""
    values: dict[str, str] = {}
    for filename in DOTENV_FILES:
        path = cwd / filename
        if not path.exists():
            continue
        for line in path.read_text(encoding="utf-8").splitlines():
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or "=" not in stripped:
                continue
            key, raw = stripped.split("=", 1)
            key = key.strip()
            value = raw.strip().strip('"').strip("'")
            if key and key not in values:
                values[key] = value
    return values


def _setting(name: str, environ: Mapping[str, str], dotenv: Mapping[str, str]) -> str | None:
    for source in (environ, dotenv):
        value = source.get(name, "").strip()
        if value:
            return value
    return None


def load_config(
    environ: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    build_dir: str | Path = DEFAULT_BUILD_DIR,
) -> DeployConfig:
    """Build deploy configuration; fails fast when the bucket is not set."""
    environ = os.environ if environ is None else environ
    cwd = cwd or Path.cwd()
    dotenv = _load_dotenv_values(cwd)

    bucket = _setting("AWS_S3_BUCKET", environ, dotenv)
    if not bucket:
        raise DeployError("AWS_S3_BUCKET environment variable is required")

    build_path = Path(build_dir)
    if not build_path.is_absolute():
        build_path = cwd / build_path

    return DeployConfig(
        bucket=bucket,
        region=_setting("AWS_REGION", environ, dotenv) or DEFAULT_REGION,
        build_dir=build_path,
        distribution_id=_setting("AWS_CLOUDFRONT_DISTRIBUTION_ID", environ, dotenv),
    )


def ensure_build_dir(build_dir: Path) -> None:
    if not build_dir.is_dir():
        raise DeployError(
            f"Build directory not found: {build_dir}. Run the frontend build first."
        )


def collect_files(root: Path, current: Path | None = None) -> list[str]:
    """Recursively list files under root as POSIX paths relative to root.

    Symlinked directories are not followed; symlinked files are included.
    """
    current = current or root
    files: list[str] = []
    for entry in sorted(current.iterdir()):
        if entry.is_symlink() and entry.is_dir():
            logger.warning(
                "Skipping symlinked directory: %s", entry.relative_to(root).as_posix()
            )
            continue
        if entry.is_dir():
            files.extend(collect_files(root, entry))
        else:
            files.append(entry.relative_to(root).as_posix())
    return files


def content_type_for(key: str) -> str:
    """MIME type from the final extension; compressed files get the archive type."""
    content_type, encoding = mimetypes.guess_type(key)
    if encoding is not None:
        return ENCODING_CONTENT_TYPES.get(encoding, DEFAULT_CONTENT_TYPE)
    return content_type or DEFAULT_CONTENT_TYPE


def cache_control_for(key: str) -> str:
    if key.startswith(ASSETS_PREFIX):
        return CACHE_CONTROL_IMMUTABLE
    return CACHE_CONTROL_REVALIDATE


def clear_bucket(s3_client: Any, bucket: str) -> int:
    """Delete every object in the bucket, one DeleteObjects call per listing page."""
    logger.info("Clearing existing objects in s3://%s", bucket)
    deleted = 0
    paginator = s3_client.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=bucket):
        contents = page.get("Contents", [])
        if not contents:
            continue
        response = s3_client.delete_objects(
            Bucket=bucket,
            Delete={"Objects": [{"Key": str(obj["Key"])} for obj in contents]},
        )
        errors = response.get("Errors", [])
        if errors:
            first = errors[0]
            raise DeployError(
                f"Failed to delete {len(errors)} object(s) from {bucket}; "
                f"first: {first.get('Key')} ({first.get('Code')})"
            )
        deleted += len(contents)

    if deleted:
        logger.info("Deleted %d objects", deleted)
    else:
        logger.info("Bucket is already empty")
    return deleted


def upload_file(s3_client: Any, bucket: str, build_dir: Path, key: str) -> None:
    body = (build_dir / key).read_bytes()
    s3_client.put_object(
        Bucket=bucket,
        Key=key,
        Body=body,
        ContentType=content_type_for(key),
        CacheControl=cache_control_for(key),
    )
    logger.info("Uploaded: %s", key)


def invalidate_distribution(cloudfront_client: Any, distribution_id: str | None) -> str | None:
    """Invalidate all paths; returns the invalidation id, or None when skipped."""
    if not distribution_id:
        logger.warning(
            "Skipping CloudFront invalidation (AWS_CLOUDFRONT_DISTRIBUTION_ID not set)"
        )
        return None

    logger.info("Creating CloudFront invalidation for %s", distribution_id)
    response = cloudfront_client.create_invalidation(
        DistributionId=distribution_id,
        InvalidationBatch={
            "CallerReference": f"deploy-{int(time.time() * 1000)}",
            "Paths": {
                "Quantity": len(INVALIDATION_PATHS),
                "Items": list(INVALIDATION_PATHS),
            },
        },
    )
    invalidation_id = str(response["Invalidation"]["Id"])
    logger.info("Invalidation created: %s", invalidation_id)
    return invalidation_id


def run_deploy(
    config: DeployConfig,
    *,
    s3_client: Any = None,
    cloudfront_client: Any = None,
) -> DeployResult:
    """Replace bucket contents with the build directory and invalidate the CDN."""
    ensure_build_dir(config.build_dir)

    logger.info("Starting deployment")
    logger.info("Bucket: %s", config.bucket)
    logger.info("Region: %s", config.region)

    s3_client = s3_client or boto3.client("s3", region_name=config.region)
    result = DeployResult(bucket=config.bucket, region=config.region)

    result.deleted = clear_bucket(s3_client, config.bucket)

    files = collect_files(config.build_dir)
    logger.info("Uploading %d files", len(files))
    for key in files:
        upload_file(s3_client, config.bucket, config.build_dir, key)
        result.uploaded.append(key)
    logger.info("Uploaded %d files to s3://%s", len(result.uploaded), config.bucket)

    if config.distribution_id:
        cloudfront_client = cloudfront_client or boto3.client(
            "cloudfront", region_name=config.region
        )
    result.invalidation_id = invalidate_distribution(cloudfront_client, config.distribution_id)

    logger.info("Deployment complete")
    logger.info("Site available at: %s", result.website_url)
    if config.distribution_id:
        logger.info(
            "CloudFront URL: check distribution %s for the CDN domain", config.distribution_id
        )
    return result


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Deploy the SPA build output to S3 + CloudFront")
    parser.add_argument(
        "--build-dir",
        default=DEFAULT_BUILD_DIR,
        help="Build output directory, relative to the working directory (default dist)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""
    args = parse_args(argv)
    try:
        config = load_config(build_dir=args.build_dir)
        run_deploy(config)
    except DeployError as exc:
        logger.error("%s", exc)
        return 1
    except Exception as exc:
        logger.error("Deployment failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
