from __future__ import annotations

import logging
from typing import Callable, Optional

from apigw_fargate.models.deployment import AssetSyncSummary, DeploymentResponse, StackOutputs, TeardownResponse
from apigw_fargate.services.asset_sync_service import AssetSyncConfig, ConfigAssetSyncService
from apigw_fargate.services.cloudformation_service import CloudFormationService, StackOperationError
from apigw_fargate.services.config import AwsConfig, S3Config, TopologyConfig
from apigw_fargate.services.s3_service import S3Service
from apigw_fargate.services.template_service import TemplateRenderer, desired_count_parameter
from apigw_fargate.services.topology import Topology, TopologyBuilder, ensure_valid
from apigw_fargate.services.topology.specs import ContainerGroupSpec, ObjectStoreSpec

logger = logging.getLogger(__name__)

S3ServiceFactory = Callable[[S3Config], S3Service]


class DeploymentService:
    """Apply and tear down the topology through CloudFormation.

    No log router may start before its configuration object is in the
    config store. On a fresh stack `deploy()` therefore:

    1) applies the template with every container group scaled to zero,
    2) mirrors the router config assets into the config bucket,
    3) applies again with the configured replica counts.

    An existing stack already has its config bucket and running tasks, so
    the assets are mirrored first and the template is applied once.
    """

    def __init__(
        self,
        *,
        config: TopologyConfig,
        aws: AwsConfig,
        cloudformation: CloudFormationService,
        s3_factory: S3ServiceFactory = S3Service,
    ) -> None:
        self._config = config
        self._aws = aws
        self._cfn = cloudformation
        self._s3_factory = s3_factory

    @property
    def stack_name(self) -> str:
        return self._config.stack_name

    def topology(self) -> Topology:
        return ensure_valid(TopologyBuilder(self._config).build())

    def synth(self) -> str:
        return TemplateRenderer(self.topology()).render_json()

    def _scale_parameters(self, topology: Topology, *, scale_to_zero: bool) -> dict[str, str]:
        return {
            desired_count_parameter(service.logical_id): "0" if scale_to_zero else str(service.desired_count)
            for service in topology.graph.of_type(ContainerGroupSpec)
        }

    async def _bucket(self, store: ObjectStoreSpec) -> S3Service:
        bucket_name = await self._cfn.physical_resource_id(self.stack_name, store.logical_id)
        return self._s3_factory(S3Config.for_bucket(bucket_name, aws=self._aws))

    async def deploy(self) -> DeploymentResponse:
        topology = self.topology()
        template_body = TemplateRenderer(topology).render_json()

        existing = await self._cfn.describe_stack(self.stack_name)
        if existing is None or existing.get("StackStatus") == "ROLLBACK_COMPLETE":
            logger.info("Deploy %s phase 1: provisioning with services scaled to zero", self.stack_name)
            await self._cfn.deploy_stack(
                stack_name=self.stack_name,
                template_body=template_body,
                parameters=self._scale_parameters(topology, scale_to_zero=True),
            )

        assets: Optional[AssetSyncSummary] = None
        config_store = topology.config_store
        if config_store is not None and config_store.asset_dir is not None:
            logger.info("Deploy %s: uploading router config assets", self.stack_name)
            sync = ConfigAssetSyncService(
                s3=await self._bucket(config_store),
                config=AssetSyncConfig(
                    asset_dir=config_store.asset_dir,
                    required_keys=(self._config.extra_config_key,),
                ),
            )
            assets = await sync.sync()

        logger.info("Deploy %s: applying with services at desired count", self.stack_name)
        status = await self._cfn.deploy_stack(
            stack_name=self.stack_name,
            template_body=template_body,
            parameters=self._scale_parameters(topology, scale_to_zero=False),
        )

        return DeploymentResponse(
            stack_name=self.stack_name,
            status=status,
            outputs=await self.outputs(),
            assets=assets,
        )

    async def outputs(self) -> StackOutputs:
        return StackOutputs.from_cfn_outputs(await self._cfn.stack_outputs(self.stack_name))

    async def _empty_stores(self, topology: Topology) -> int:
        deleted = 0
        for store in topology.graph.of_type(ObjectStoreSpec):
            if not store.auto_delete_objects:
                continue
            detail = await self._cfn.describe_resource(self.stack_name, store.logical_id)
            bucket_name = detail.get("PhysicalResourceId")
            if not bucket_name or detail.get("ResourceStatus") == "DELETE_COMPLETE":
                continue
            s3 = self._s3_factory(S3Config.for_bucket(str(bucket_name), aws=self._aws))
            deleted += await s3.empty_bucket()
        return deleted

    async def destroy(self) -> TeardownResponse:
        """Empty both object stores, then delete the stack.

        Firehose may flush a last batch while the stack is being deleted,
        leaving the log bucket non-empty; one more empty-then-delete round
        covers that.
        """

        if await self._cfn.describe_stack(self.stack_name) is None:
            logger.info("Stack %s is not provisioned; nothing to tear down", self.stack_name)
            return TeardownResponse(stack_name=self.stack_name, status="DELETE_COMPLETE", objects_deleted=0)

        topology = self.topology()
        deleted = await self._empty_stores(topology)
        try:
            status = await self._cfn.delete_stack(self.stack_name)
        except StackOperationError as exc:
            if exc.status != "DELETE_FAILED":
                raise
            logger.warning("Stack %s delete failed; emptying stores and retrying once", self.stack_name)
            deleted += await self._empty_stores(topology)
            status = await self._cfn.delete_stack(self.stack_name)

        return TeardownResponse(stack_name=self.stack_name, status=status, objects_deleted=deleted)
