"""
Package the build output as a Lambda layer zip and publish it.

Publishing uploads the zip to S3 (layers are usually larger than the
direct-upload limit) and registers a new layer version pointing at it.
"""

import os
import zipfile
from pathlib import Path
from typing import Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError

from observability.logging import SERVICE_NAME

from .config import BuildConfig

logger = Logger(service=SERVICE_NAME)


class LayerPublisher:
    """Zips a build output tree and publishes it as a Lambda layer version."""

    ARCHITECTURE = "x86_64"

    def __init__(self, config: BuildConfig):
        self.config = config
        self.region = os.environ.get("AWS_REGION", "us-east-1")
        self.layer_name = config.layer_name
        self.bucket_name = config.layer_bucket or ""
        self._s3_client = None
        self._lambda_client = None

    @property
    def s3_client(self):
        if self._s3_client is None:
            self._s3_client = boto3.client("s3", region_name=self.region)
        return self._s3_client

    @property
    def lambda_client(self):
        if self._lambda_client is None:
            self._lambda_client = boto3.client("lambda", region_name=self.region)
        return self._lambda_client

    def _generate_key(self, zip_path: Path) -> str:
        """S3 key in format: layers/{layer_name}/{zip file name}"""
        return f"layers/{self.layer_name}/{zip_path.name}"

    def package(self, out_dir: Path, zip_path: Path) -> Path:
        """Write a deflated zip of ``out_dir``; symlinks are stored as their targets."""
        out_dir = Path(out_dir)
        zip_path = Path(zip_path)
        zip_path.parent.mkdir(parents=True, exist_ok=True)
        zip_resolved = zip_path.resolve()

        count = 0
        with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zipf:
            for root, dirs, files in os.walk(out_dir):
                dirs.sort()
                for file in sorted(files):
                    file_path = Path(root) / file
                    if file_path.resolve() == zip_resolved:
                        continue
                    if not file_path.exists():
                        logger.warning(f"Skipping dangling link {file_path}")
                        continue
                    zipf.write(file_path, file_path.relative_to(out_dir).as_posix())
                    count += 1

        size = zip_path.stat().st_size
        logger.info(f"📦 Created layer zip {zip_path} ({count} files, {size:,} bytes)")
        return zip_path

    def publish(self, zip_path: Path) -> Optional[str]:
        """
        Upload the zip and publish a layer version.

        Args:
            zip_path: Layer zip created by ``package``

        Returns:
            The LayerVersionArn if successful, None otherwise
        """
        if not self.layer_name:
            logger.info("LAYER_NAME not configured; skipping publish")
            return None
        if not self.bucket_name:
            logger.warning("LAYER_BUCKET_NAME not configured; cannot publish layer")
            return None

        zip_path = Path(zip_path)
        key = self._generate_key(zip_path)
        try:
            self.s3_client.upload_file(str(zip_path), self.bucket_name, key)
            logger.info(f"Uploaded layer zip to s3://{self.bucket_name}/{key}")

            response = self.lambda_client.publish_layer_version(
                LayerName=self.layer_name,
                Description=(
                    f"Chromium headless runtime ({self.config.profile.name})"
                ),
                Content={"S3Bucket": self.bucket_name, "S3Key": key},
                CompatibleRuntimes=[f"python{self.config.python_version}"],
                CompatibleArchitectures=[self.ARCHITECTURE],
            )
        except S3UploadFailedError as e:
            logger.warning(f"Layer upload failed for {self.layer_name}: {e}")
            return None
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.warning(
                f"Layer publish failed for {self.layer_name}: "
                f"error_code={error_code}, message={e}"
            )
            return None

        arn = response.get("LayerVersionArn")
        logger.info(f"🚀 Published layer version {arn}")
        return arn
