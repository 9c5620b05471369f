# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for assetgc tests.

Provides a moto server holding a bootstrapped account for end-to-end
runs, small in-memory clients for failure injection and backdated
timestamps, plus configuration helpers.
"""

import asyncio
import copy
import hashlib
import json
import os
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Generator, List

import httpx
import pytest
import pytest_asyncio
from botocore.exceptions import ClientError

# Set test environment variables
os.environ["ASSETGC_ADMIN_API_KEY"] = "test-api-key-12345"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"

BUCKET = "cdk-hnb659fds-assets-123456789012-us-east-1"
REPOSITORY = "cdk-hnb659fds-container-assets-123456789012-us-east-1"
QUALIFIER = "hnb659fds"


def days_ago(days: float) -> datetime:
    return datetime.now(UTC) - timedelta(days=days)


def ms_days_ago(days: float) -> int:
    return int(days_ago(days).timestamp() * 1000)


def client_error(code: str, operation: str, message: str = "boom") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class Recorder:
    """Records every call made to a fake client."""

    def __init__(self) -> None:
        self.calls: Dict[str, List[dict]] = defaultdict(list)
        self.latency = 0.0

    async def _record(self, operation: str, kwargs: dict) -> None:
        self.calls[operation].append(kwargs)
        if self.latency:
            await asyncio.sleep(self.latency)

    def count(self, operation: str) -> int:
        return len(self.calls[operation])


class FakePaginator:
    def __init__(self, pages: List[dict]) -> None:
        self._pages = pages

    async def paginate(self, **kwargs):
        for page in self._pages:
            yield page


class FakeCloudFormation(Recorder):
    """CloudFormation with a bootstrap stack and any number of app stacks."""

    def __init__(self, page_size: int = 2) -> None:
        super().__init__()
        self.page_size = page_size
        self.stacks: List[dict] = []
        self.bootstrap: dict | None = {
            "StackName": "CDKToolkit",
            "Outputs": [
                {"OutputKey": "BucketName", "OutputValue": BUCKET},
                {"OutputKey": "ImageRepositoryName", "OutputValue": REPOSITORY},
                {"OutputKey": "BootstrapVersion", "OutputValue": "21"},
            ],
            "Parameters": [{"ParameterKey": "Qualifier", "ParameterValue": QUALIFIER}],
        }
        self.fail_listing = False

    def add_stack(
        self,
        name: str,
        template: Any,
        status: str = "CREATE_COMPLETE",
        qualifier: str | None = QUALIFIER,
    ) -> None:
        parameters = []
        if qualifier is not None:
            parameters.append(
                {
                    "ParameterKey": "BootstrapVersion",
                    "DefaultValue": f"/cdk-bootstrap/{qualifier}/version",
                }
            )
        self.stacks.append(
            {"name": name, "status": status, "template": template, "parameters": parameters}
        )

    def _find(self, name: str) -> dict:
        return next(s for s in self.stacks if s["name"] == name)

    def get_paginator(self, operation: str) -> FakePaginator:
        assert operation == "list_stacks"
        self.calls["list_stacks"].append({"at": time.monotonic()})
        if self.fail_listing:
            raise client_error("Throttling", "ListStacks")
        summaries = [
            {"StackName": s["name"], "StackStatus": s["status"]} for s in self.stacks
        ]
        pages = [
            {"StackSummaries": summaries[i:i + self.page_size]}
            for i in range(0, len(summaries), self.page_size)
        ] or [{"StackSummaries": []}]
        return FakePaginator(pages)

    async def describe_stacks(self, StackName: str) -> dict:
        await self._record("describe_stacks", {"StackName": StackName})
        if self.bootstrap is None or StackName != self.bootstrap["StackName"]:
            raise client_error(
                "ValidationError", "DescribeStacks", f"Stack with id {StackName} does not exist"
            )
        return {"Stacks": [self.bootstrap]}

    async def get_template_summary(self, StackName: str) -> dict:
        await self._record("get_template_summary", {"StackName": StackName})
        return {"Parameters": self._find(StackName)["parameters"]}

    async def get_template(self, StackName: str) -> dict:
        await self._record("get_template", {"StackName": StackName})
        return {"TemplateBody": self._find(StackName)["template"]}


class FakeS3(Recorder):
    """A single-bucket S3 with tagging and paged listing."""

    def __init__(self, page_size: int = 1000) -> None:
        super().__init__()
        self.page_size = page_size
        self.objects: Dict[str, dict] = {}
        self.fail_tagging: set = set()
        self.fail_delete: set = set()
        self.fail_listing = False

    def add_object(
        self,
        key: str,
        age_days: float = 30,
        size: int = 1024,
        tags: List[dict] | None = None,
    ) -> None:
        self.objects[key] = {
            "Size": size,
            "LastModified": days_ago(age_days),
            "Tags": list(tags or []),
        }

    async def list_objects_v2(
        self, Bucket: str, ContinuationToken: str | None = None, MaxKeys: int = 1000
    ) -> dict:
        await self._record(
            "list_objects_v2",
            {"Bucket": Bucket, "ContinuationToken": ContinuationToken, "MaxKeys": MaxKeys},
        )
        if self.fail_listing:
            raise client_error("AccessDenied", "ListObjectsV2")
        # Tokens name the next key, so deletes between pages shift nothing
        keys = sorted(self.objects)
        start = next(
            (i for i, k in enumerate(keys) if ContinuationToken is None or k >= ContinuationToken),
            len(keys),
        )
        end = start + min(MaxKeys, self.page_size)
        page = keys[start:end]
        response = {
            "KeyCount": len(page),
            "Contents": [
                {
                    "Key": k,
                    "Size": self.objects[k]["Size"],
                    "LastModified": self.objects[k]["LastModified"],
                }
                for k in page
            ],
        }
        if end < len(keys):
            response["NextContinuationToken"] = keys[end]
        return response

    async def get_object_tagging(self, Bucket: str, Key: str) -> dict:
        await self._record("get_object_tagging", {"Bucket": Bucket, "Key": Key})
        return {"TagSet": [dict(t) for t in self.objects[Key]["Tags"]]}

    async def put_object_tagging(self, Bucket: str, Key: str, Tagging: dict) -> dict:
        await self._record(
            "put_object_tagging", {"Bucket": Bucket, "Key": Key, "Tagging": Tagging}
        )
        if Key in self.fail_tagging:
            raise client_error("OperationAborted", "PutObjectTagging")
        self.objects[Key]["Tags"] = [dict(t) for t in Tagging["TagSet"]]
        return {}

    async def delete_object_tagging(self, Bucket: str, Key: str) -> dict:
        await self._record("delete_object_tagging", {"Bucket": Bucket, "Key": Key})
        self.objects[Key]["Tags"] = []
        return {}

    async def delete_objects(self, Bucket: str, Delete: dict) -> dict:
        await self._record("delete_objects", {"Bucket": Bucket, "Delete": Delete})
        assert len(Delete["Objects"]) <= 1000
        errors = []
        for item in Delete["Objects"]:
            key = item["Key"]
            if key in self.fail_delete:
                errors.append({"Key": key, "Code": "AccessDenied", "Message": "denied"})
            else:
                self.objects.pop(key, None)
        return {"Errors": errors} if errors else {}


class FakeECR(Recorder):
    """A single-repository ECR; ListImages returns one row per tag."""

    def __init__(self, page_size: int = 100) -> None:
        super().__init__()
        self.page_size = page_size
        self.images: Dict[str, dict] = {}
        self.fail_put: set = set()

    def add_image(
        self,
        digest: str,
        tags: List[str],
        age_days: float = 30,
        size: int = 2048,
    ) -> None:
        self.images[digest] = {
            "tags": list(tags),
            "size": size,
            "pushed_at": days_ago(age_days),
            "manifest": json.dumps({"digest": digest}),
        }

    def _rows(self) -> List[dict]:
        rows = []
        for digest, image in self.images.items():
            if not image["tags"]:
                rows.append({"imageDigest": digest})
            for tag in image["tags"]:
                rows.append({"imageDigest": digest, "imageTag": tag})
        return rows

    async def list_images(
        self, repositoryName: str, maxResults: int = 100, nextToken: str | None = None
    ) -> dict:
        await self._record(
            "list_images",
            {"repositoryName": repositoryName, "maxResults": maxResults, "nextToken": nextToken},
        )
        rows = sorted(self._rows(), key=self._row_key)
        start = next(
            (i for i, r in enumerate(rows) if nextToken is None or self._row_key(r) >= nextToken),
            len(rows),
        )
        end = start + min(maxResults, self.page_size)
        response = {"imageIds": rows[start:end]}
        if end < len(rows):
            response["nextToken"] = self._row_key(rows[end])
        return response

    @staticmethod
    def _row_key(row: dict) -> str:
        return f"{row['imageDigest']}|{row.get('imageTag', '')}"

    async def describe_images(self, repositoryName: str, imageIds: List[dict]) -> dict:
        await self._record(
            "describe_images", {"repositoryName": repositoryName, "imageIds": imageIds}
        )
        assert len(imageIds) <= 100
        details = []
        for image_id in imageIds:
            image = self.images[image_id["imageDigest"]]
            details.append(
                {
                    "imageDigest": image_id["imageDigest"],
                    "imageTags": list(image["tags"]),
                    "imageSizeInBytes": image["size"],
                    "imagePushedAt": image["pushed_at"],
                }
            )
        return {"imageDetails": details}

    async def batch_get_image(self, repositoryName: str, imageIds: List[dict]) -> dict:
        await self._record(
            "batch_get_image", {"repositoryName": repositoryName, "imageIds": imageIds}
        )
        assert len(imageIds) <= 100
        return {
            "images": [
                {
                    "imageId": {"imageDigest": i["imageDigest"]},
                    "imageManifest": self.images[i["imageDigest"]]["manifest"],
                }
                for i in imageIds
            ]
        }

    async def put_image(
        self, repositoryName: str, imageDigest: str, imageManifest: str, imageTag: str
    ) -> dict:
        await self._record(
            "put_image",
            {
                "repositoryName": repositoryName,
                "imageDigest": imageDigest,
                "imageManifest": imageManifest,
                "imageTag": imageTag,
            },
        )
        if imageDigest in self.fail_put:
            raise client_error("ImageTagAlreadyExistsException", "PutImage")
        self.images[imageDigest]["tags"].append(imageTag)
        return {}

    async def batch_delete_image(self, repositoryName: str, imageIds: List[dict]) -> dict:
        await self._record(
            "batch_delete_image", {"repositoryName": repositoryName, "imageIds": imageIds}
        )
        assert len(imageIds) <= 100
        failures = []
        for image_id in imageIds:
            if "imageDigest" in image_id:
                if self.images.pop(image_id["imageDigest"], None) is None:
                    failures.append(
                        {"imageId": image_id, "failureCode": "ImageNotFound"}
                    )
            else:
                tag = image_id["imageTag"]
                owner = next(
                    (img for img in self.images.values() if tag in img["tags"]), None
                )
                if owner is None:
                    failures.append({"imageId": image_id, "failureCode": "ImageNotFound"})
                else:
                    owner["tags"].remove(tag)
        return {"failures": failures}


class FakeSession:
    """Stands in for an aiobotocore session."""

    def __init__(self, cfn: FakeCloudFormation, s3: FakeS3, ecr: FakeECR) -> None:
        self.clients = {"cloudformation": cfn, "s3": s3, "ecr": ecr}
        self.created: List[str] = []

    @asynccontextmanager
    async def _client(self, service: str):
        yield self.clients[service]

    def create_client(self, service: str, **kwargs):
        self.created.append(service)
        return self._client(service)


@pytest.fixture
def fake_cfn() -> FakeCloudFormation:
    return FakeCloudFormation()


@pytest.fixture
def fake_s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def fake_ecr() -> FakeECR:
    return FakeECR()


@pytest.fixture
def fake_session(fake_cfn, fake_s3, fake_ecr) -> FakeSession:
    return FakeSession(fake_cfn, fake_s3, fake_ecr)


@pytest.fixture
def make_config():
    """Build a non-interactive test configuration."""
    from assetgc.config import GCConfig, GCAction, GCTarget

    def _make(**overrides):
        values = {
            "target": GCTarget.S3,
            "action": GCAction.FULL,
            "rollback_buffer_days": 0,
            "created_buffer_days": 0,
            "confirm": False,
        }
        values.update(overrides)
        return GCConfig(**values)

    return _make


@pytest.fixture
def make_state(fake_session):
    """Create initialized GC state bound to the fake session."""
    from assetgc.core import initialize_gc_state

    async def _make(config, prompt=None):
        return await initialize_gc_state(config, session=fake_session, prompt=prompt)

    return _make


# ============================================================================
# moto-backed account
# ============================================================================

MOTO_REGION = "us-east-1"


def asset_hash(name: str) -> str:
    """The 64-character source hash deployments use as asset file and tag names."""
    return hashlib.sha256(name.encode()).hexdigest()


def _bootstrap_template() -> str:
    return json.dumps(
        {
            "Parameters": {"Qualifier": {"Type": "String"}},
            "Resources": {"StagingQueue": {"Type": "AWS::SQS::Queue"}},
            "Outputs": {
                "BucketName": {"Value": BUCKET},
                "ImageRepositoryName": {"Value": REPOSITORY},
                "BootstrapVersion": {"Value": "21"},
            },
        }
    )


def _app_template(assets: List[str], qualifier: str) -> str:
    return json.dumps(
        {
            "Parameters": {
                "BootstrapVersion": {
                    "Type": "String",
                    "Default": f"/cdk-bootstrap/{qualifier}/version",
                }
            },
            "Resources": {
                "Queue": {
                    "Type": "AWS::SQS::Queue",
                    "Metadata": {"aws:asset:references": assets},
                }
            },
        }
    )


def _image_manifest(name: str) -> str:
    return json.dumps(
        {
            "schemaVersion": 2,
            "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
            "config": {
                "mediaType": "application/vnd.docker.container.image.v1+json",
                "size": 1470,
                "digest": f"sha256:{asset_hash(name + '-config')}",
            },
            "layers": [
                {
                    "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
                    "size": 2048,
                    "digest": f"sha256:{asset_hash(name + '-layer')}",
                }
            ],
        }
    )


async def _push_image(ecr: Any, name: str, tags: List[str]) -> str:
    manifest = _image_manifest(name)
    digest = ""
    for tag in tags:
        response = await ecr.put_image(
            repositoryName=REPOSITORY, imageManifest=manifest, imageTag=tag
        )
        digest = response["image"]["imageId"]["imageDigest"]
    return digest


class MotoEnvironment:
    """
    A bootstrapped account on a moto server.

    `session` is what the collector runs with; every API call it makes is
    recorded by operation name. Setup and assertions go through a second
    session so they never show up in the record.
    """

    def __init__(self, endpoint_url: str) -> None:
        from aiobotocore.session import get_session

        self.endpoint_url = endpoint_url
        self.calls: Dict[str, List[dict]] = defaultdict(list)
        self.session = get_session()
        self.session.register("provide-client-params", self._record)
        self._setup_session = get_session()

    def _record(self, params, event_name, **kwargs) -> None:
        self.calls[event_name.rsplit(".", 1)[-1]].append(copy.deepcopy(params))

    def count(self, operation: str) -> int:
        return len(self.calls[operation])

    def client(self, service: str):
        return self._setup_session.create_client(
            service, region_name=MOTO_REGION, endpoint_url=self.endpoint_url
        )

    def recorded_client(self, service: str):
        return self.session.create_client(
            service, region_name=MOTO_REGION, endpoint_url=self.endpoint_url
        )

    async def state(self, config, prompt=None):
        from assetgc.core import initialize_gc_state

        return await initialize_gc_state(config, session=self.session, prompt=prompt)

    async def bootstrap(self, qualifier: str = QUALIFIER) -> None:
        async with self.client("s3") as s3:
            await s3.create_bucket(Bucket=BUCKET)
        async with self.client("ecr") as ecr:
            await ecr.create_repository(repositoryName=REPOSITORY)
        async with self.client("cloudformation") as cfn:
            await cfn.create_stack(
                StackName="CDKToolkit",
                TemplateBody=_bootstrap_template(),
                Parameters=[{"ParameterKey": "Qualifier", "ParameterValue": qualifier}],
            )

    async def deploy_stack(self, name: str, *assets: str, qualifier: str = QUALIFIER) -> None:
        async with self.client("cloudformation") as cfn:
            await cfn.create_stack(
                StackName=name, TemplateBody=_app_template(list(assets), qualifier)
            )

    async def put_objects(
        self, *keys: str, size: int = 1024, isolated_days: float | None = None
    ) -> None:
        async with self.client("s3") as s3:
            for key in keys:
                await s3.put_object(Bucket=BUCKET, Key=key, Body=b"x" * size)
                if isolated_days is not None:
                    await s3.put_object_tagging(
                        Bucket=BUCKET,
                        Key=key,
                        Tagging={
                            "TagSet": [
                                {
                                    "Key": "aws-cdk:isolated",
                                    "Value": days_ago(isolated_days).isoformat(),
                                }
                            ]
                        },
                    )

    async def put_image(self, name: str, *tags: str) -> str:
        """Push one image under each tag; returns its digest."""
        async with self.client("ecr") as ecr:
            return await _push_image(ecr, name, tags)

    async def put_images(self, *names: str) -> List[str]:
        """Push one image per name, tagged with the hash of the name."""
        async with self.client("ecr") as ecr:
            return [await _push_image(ecr, name, [asset_hash(name)]) for name in names]

    async def object_keys(self) -> List[str]:
        async with self.client("s3") as s3:
            response = await s3.list_objects_v2(Bucket=BUCKET)
        return sorted(obj["Key"] for obj in response.get("Contents", []))

    async def object_tags(self, key: str) -> Dict[str, str]:
        async with self.client("s3") as s3:
            response = await s3.get_object_tagging(Bucket=BUCKET, Key=key)
        return {tag["Key"]: tag["Value"] for tag in response["TagSet"]}

    async def images(self) -> Dict[str, List[str]]:
        """Digest to sorted tags for every image left in the repository."""
        async with self.client("ecr") as ecr:
            listed = await ecr.list_images(repositoryName=REPOSITORY)
            digests = sorted({row["imageDigest"] for row in listed.get("imageIds", [])})
            if not digests:
                return {}
            response = await ecr.describe_images(
                repositoryName=REPOSITORY,
                imageIds=[{"imageDigest": digest} for digest in digests],
            )
        return {
            detail["imageDigest"]: sorted(detail.get("imageTags", []))
            for detail in response["imageDetails"]
        }


@pytest.fixture(scope="session")
def moto_server() -> Generator[str, None, None]:
    """A moto server shared by the session, reset before each test that uses it."""
    from moto.server import ThreadedMotoServer

    server = ThreadedMotoServer(ip_address="127.0.0.1", port=0, verbose=False)
    server.start()
    host, port = server.get_host_and_port()
    yield f"http://{host}:{port}"
    server.stop()


@pytest_asyncio.fixture
async def moto_env(moto_server: str) -> MotoEnvironment:
    httpx.post(f"{moto_server}/moto-api/reset").raise_for_status()
    env = MotoEnvironment(moto_server)
    await env.bootstrap()
    return env
