#!/usr/bin/env python3
"""
setup_infrastructure.py — One-time S3 + CloudFront setup for the SPA.

Steps:
  1. Create the S3 bucket (public-read static website, index/error document
     index.html for client-side routing). An existing bucket owned by the
     caller is accepted as-is and left unconfigured.
  2. Create a CloudFront distribution in front of the bucket website endpoint,
     rewriting 404s to /index.html with status 200.

A CloudFront failure is logged and does not fail the run; the distribution can
be created by hand afterwards. Re-running after such a failure creates a new
distribution.

Configuration (environment, then .env.local / .env in the working directory):
  AWS_S3_BUCKET   default react-app-<epoch-ms>
  AWS_REGION      default us-east-1

Usage:
    uv run python scripts/setup_infrastructure.py
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger("setup_infrastructure")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

DEFAULT_REGION = "us-east-1"
CLOUDFRONT_REGION = "us-east-1"
INDEX_DOCUMENT = "index.html"
ORIGIN_ID = "S3-Website"
PRICE_CLASS = "PriceClass_100"
DOTENV_FILES: tuple[str, ...] = (".env.local", ".env")


@dataclass(frozen=True)
class SetupConfig:
    bucket: str
    region: str


@dataclass(frozen=True)
class DistributionInfo:
    id: str
    domain_name: str


@dataclass(frozen=True)
class SetupResult:
    bucket: str
    region: str
    bucket_status: str
    distribution: DistributionInfo | None

    @property
    def website_url(self) -> str:
        return f"http://{website_endpoint(self.bucket, self.region)}"


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


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def load_config(
    environ: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    now_ms: int | None = None,
) -> SetupConfig:
    environ = os.environ if environ is None else environ
    dotenv = _load_dotenv_values(cwd or Path.cwd())

    def _setting(name: str) -> str:
        return environ.get(name, "").strip() or dotenv.get(name, "").strip()

    bucket = _setting("AWS_S3_BUCKET") or f"react-app-{now_ms or _epoch_ms()}"
    region = _setting("AWS_REGION") or DEFAULT_REGION
    return SetupConfig(bucket=bucket, region=region)


def website_endpoint(bucket: str, region: str) -> str:
    return f"{bucket}.s3-website-{region}.amazonaws.com"


def bucket_policy(bucket: str) -> dict[str, Any]:
    """Public read policy for every object in the bucket."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "PublicReadGetObject",
                "Effect": "Allow",
                "Principal": "*",
                "Action": "s3:GetObject",
                "Resource": f"arn:aws:s3:::{bucket}/*",
            }
        ],
    }


def create_bucket(s3_client: Any, bucket: str, region: str) -> str:
    """Create and configure the website bucket. Returns 'created' or 'exists'."""
    logger.info("Creating S3 bucket %s in %s", bucket, region)

    create_args: dict[str, Any] = {"Bucket": bucket}
    if region != "us-east-1":
        create_args["CreateBucketConfiguration"] = {"LocationConstraint": region}
    try:
        s3_client.create_bucket(**create_args)
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code", "")
        if code == "BucketAlreadyOwnedByYou":
            logger.info("Bucket already exists and is owned by you")
            return "exists"
        raise
    logger.info("Bucket created")

    # Public access goes through the bucket policy, so the block must be lifted first.
    s3_client.put_public_access_block(
        Bucket=bucket,
        PublicAccessBlockConfiguration={
            "BlockPublicAcls": False,
            "IgnorePublicAcls": False,
            "BlockPublicPolicy": False,
            "RestrictPublicBuckets": False,
        },
    )
    logger.info("Public access configured")

    s3_client.put_bucket_website(
        Bucket=bucket,
        WebsiteConfiguration={
            "IndexDocument": {"Suffix": INDEX_DOCUMENT},
            "ErrorDocument": {"Key": INDEX_DOCUMENT},
        },
    )
    logger.info("Static website hosting enabled")

    s3_client.put_bucket_policy(Bucket=bucket, Policy=json.dumps(bucket_policy(bucket)))
    logger.info("Bucket policy set for public read access")
    return "created"


def distribution_config(bucket: str, region: str, caller_reference: str) -> dict[str, Any]:
    methods = {"Quantity": 2, "Items": ["GET", "HEAD"]}
    return {
        "CallerReference": caller_reference,
        "Comment": f"CDN for {bucket}",
        "Enabled": True,
        "DefaultRootObject": INDEX_DOCUMENT,
        "Origins": {
            "Quantity": 1,
            "Items": [
                {
                    "Id": ORIGIN_ID,
                    "DomainName": website_endpoint(bucket, region),
                    # Website endpoints only speak plain HTTP.
                    "CustomOriginConfig": {
                        "HTTPPort": 80,
                        "HTTPSPort": 443,
                        "OriginProtocolPolicy": "http-only",
                    },
                }
            ],
        },
        "DefaultCacheBehavior": {
            "TargetOriginId": ORIGIN_ID,
            "ViewerProtocolPolicy": "redirect-to-https",
            "AllowedMethods": {**methods, "CachedMethods": dict(methods)},
            "ForwardedValues": {
                "QueryString": False,
                "Cookies": {"Forward": "none"},
            },
            "MinTTL": 0,
            "DefaultTTL": 86400,
            "MaxTTL": 31536000,
            "Compress": True,
        },
        "CustomErrorResponses": {
            "Quantity": 1,
            "Items": [
                {
                    "ErrorCode": 404,
                    "ResponsePagePath": f"/{INDEX_DOCUMENT}",
                    "ResponseCode": "200",
                    "ErrorCachingMinTTL": 300,
                }
            ],
        },
        "PriceClass": PRICE_CLASS,
    }


def create_distribution(
    cloudfront_client: Any, bucket: str, region: str
) -> DistributionInfo | None:
    """Create the CloudFront distribution; returns None when CloudFront rejects it."""
    logger.info("Creating CloudFront distribution")
    config = distribution_config(bucket, region, caller_reference=f"{bucket}-{_epoch_ms()}")
    try:
        response = cloudfront_client.create_distribution(DistributionConfig=config)
    except (BotoCoreError, ClientError) as exc:
        logger.error("Failed to create CloudFront distribution: %s", exc)
        logger.info("You can create it manually or skip this step")
        return None

    distribution = response["Distribution"]
    info = DistributionInfo(
        id=str(distribution["Id"]),
        domain_name=str(distribution["DomainName"]),
    )
    logger.info("CloudFront distribution created")
    logger.info("Distribution ID: %s", info.id)
    logger.info("Domain Name: %s", info.domain_name)
    logger.info("Status: Deploying (this may take 15-20 minutes)")
    return info


def render_env_summary(result: SetupResult) -> str:
    """Render the .env values and next steps for the operator."""
    lines = [
        "Add these to your .env file:",
        "",
        f"AWS_S3_BUCKET={result.bucket}",
        f"AWS_REGION={result.region}",
    ]
    if result.distribution is not None:
        lines += [
            f"AWS_CLOUDFRONT_DISTRIBUTION_ID={result.distribution.id}",
            "",
            f"CloudFront URL: https://{result.distribution.domain_name}",
            "  (available after the CloudFront deployment completes)",
        ]
    lines += [
        "",
        f"S3 Website URL: {result.website_url}",
        "",
        "Next steps:",
        "  1. Create .env with the values above",
        "  2. Build the frontend",
        "  3. Run: uv run python scripts/deploy_frontend.py",
    ]
    return "\n".join(lines)


def run_setup(
    config: SetupConfig,
    *,
    s3_client: Any = None,
    cloudfront_client: Any = None,
) -> SetupResult:
    s3_client = s3_client or boto3.client("s3", region_name=config.region)
    cloudfront_client = cloudfront_client or boto3.client(
        "cloudfront", region_name=CLOUDFRONT_REGION
    )

    bucket_status = create_bucket(s3_client, config.bucket, config.region)
    distribution = create_distribution(cloudfront_client, config.bucket, config.region)
    return SetupResult(
        bucket=config.bucket,
        region=config.region,
        bucket_status=bucket_status,
        distribution=distribution,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create the S3 bucket and CloudFront distribution for the SPA"
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""
    parse_args(argv)
    logger.info("Setting up AWS infrastructure for S3 + CloudFront deployment")
    try:
        result = run_setup(load_config())
    except Exception as exc:
        logger.error("Infrastructure setup failed: %s", exc)
        return 1

    logger.info("Infrastructure setup complete")
    print(render_env_summary(result))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
