"""MySQL public IP scenario.

Deploys a Cloud SQL MySQL instance with a public IP, checks the module
outputs, probes the instance directly and through the Cloud SQL proxy,
then destroys it.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Optional

from actions.gcp import get_random_region
from actions.mysql import DirectTarget, TunnelTarget, verify_direct, verify_tunnel
from actions.terraform import build_options, destroy, init_and_apply, output
from common import ActionResult, unique_id
from config import RunConfig, get_project_id_from_env
from errors import ExpectationError
from scenarios import register_scenario
from state_store import StateStore

logger = logging.getLogger(__name__)

KEY_REGION = 'region'
KEY_PROJECT = 'project'
KEY_OPTIONS = 'terraform_options'

OUTPUT_INSTANCE_NAME = 'master_instance_name'
OUTPUT_DB_NAME = 'db_name'
OUTPUT_PROXY_CONNECTION = 'master_proxy_connection'
OUTPUT_PUBLIC_IP = 'master_public_ip_address'


def expected_proxy_connection(project: str, region: str, instance_name: str) -> str:
    """Connection name Cloud SQL assigns: project:region:instance."""
    return f'{project}:{region}:{instance_name}'


def check_instance_name(instance_name: str, prefix: str) -> None:
    if not instance_name.startswith(prefix):
        raise ExpectationError('Instance name prefix', f'{prefix}*', instance_name)


def check_db_name(db_name: str, expected: str) -> None:
    if db_name != expected:
        raise ExpectationError('Database name', expected, db_name)


def check_proxy_connection(proxy_connection: str, project: str, region: str, instance_name: str) -> None:
    expected = expected_proxy_connection(project, region, instance_name)
    if proxy_connection != expected:
        raise ExpectationError('Proxy connection string', expected, proxy_connection)


@dataclass
class BootstrapAction:
    """Resolve project and region, persist both."""
    name: str
    rng: Optional[random.Random] = None

    def run(self, config: RunConfig, store: StateStore) -> ActionResult:
        start = time.time()
        project = config.project or get_project_id_from_env()
        region = get_random_region(
            project,
            config.approved_regions,
            config.forbidden_regions,
            query=config.query_regions,
            rng=self.rng,
        )
        store.save_string(KEY_REGION, region)
        store.save_string(KEY_PROJECT, project)
        return ActionResult(
            success=True,
            message=f"project={project} region={region}",
            duration=time.time() - start,
        )


@dataclass
class DeployAction:
    """Build provisioning options, persist them, apply."""
    name: str
    suffix: Optional[str] = None  # Fixed name suffix; random when unset

    def run(self, config: RunConfig, store: StateStore) -> ActionResult:
        start = time.time()
        region = store.load_string(KEY_REGION)
        project = store.load_string(KEY_PROJECT)

        suffix = self.suffix or unique_id()
        options = build_options(project, region, store.work_dir, config.name_prefix, config, suffix=suffix)
        # On disk before apply starts; teardown reads it even if apply fails
        store.save_options(options, KEY_OPTIONS)
        logger.info(f"[{self.name}] Deploying {options.variables['name_prefix']} to {project}/{region}")

        init_and_apply(options)
        return ActionResult(
            success=True,
            message=f"Applied {options.variables['name_prefix']}",
            duration=time.time() - start,
        )


@dataclass
class ValidateOutputsAction:
    """Check instance name prefix, db name and proxy connection format."""
    name: str

    def run(self, config: RunConfig, store: StateStore) -> ActionResult:
        start = time.time()
        options = store.load_options(KEY_OPTIONS)
        region = store.load_string(KEY_REGION)
        project = store.load_string(KEY_PROJECT)

        instance_name = output(options, OUTPUT_INSTANCE_NAME)
        db_name = output(options, OUTPUT_DB_NAME)
        proxy_connection = output(options, OUTPUT_PROXY_CONNECTION)

        check_instance_name(instance_name, config.name_prefix)
        check_db_name(db_name, config.db_name)
        check_proxy_connection(proxy_connection, project, region, instance_name)

        return ActionResult(
            success=True,
            message=f"Outputs valid for {instance_name}",
            duration=time.time() - start,
        )


@dataclass
class SQLTestsAction:
    """Probe the instance through its public IP."""
    name: str

    def run(self, config: RunConfig, store: StateStore) -> ActionResult:
        start = time.time()
        options = store.load_options(KEY_OPTIONS)
        public_ip = output(options, OUTPUT_PUBLIC_IP)

        target = DirectTarget(
            host=public_ip,
            port=config.db_port,
            user=config.db_user,
            password=config.db_password,
            database=config.db_name,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            write_timeout=config.write_timeout,
        )
        row_id = verify_direct(target, marker=config.direct_marker, step=config.auto_increment_step)
        return ActionResult(
            success=True,
            message=f"Direct probe row id {row_id}",
            duration=time.time() - start,
        )


@dataclass
class ProxyTestsAction:
    """Probe the instance through the Cloud SQL proxy."""
    name: str

    def run(self, config: RunConfig, store: StateStore) -> ActionResult:
        start = time.time()
        options = store.load_options(KEY_OPTIONS)
        proxy_connection = output(options, OUTPUT_PROXY_CONNECTION)

        target = TunnelTarget(
            connection_name=proxy_connection,
            user=config.db_user,
            password=config.db_password,
            database=config.db_name,
            timeout=config.tunnel_timeout,
        )
        row_id = verify_tunnel(target, marker=config.tunnel_marker, step=config.auto_increment_step)
        return ActionResult(
            success=True,
            message=f"Proxy probe row id {row_id}",
            duration=time.time() - start,
        )


@dataclass
class TeardownAction:
    """Destroy everything deploy created."""
    name: str

    def run(self, config: RunConfig, store: StateStore) -> ActionResult:
        start = time.time()
        options = store.load_options(KEY_OPTIONS)
        destroy(options)
        return ActionResult(
            success=True,
            message=f"Destroyed {options.variables.get('name_prefix', options.name_prefix)}",
            duration=time.time() - start,
        )


@register_scenario
class MySQLPublicIP:
    """Deploy a public-IP MySQL instance and verify both access paths."""

    name = 'mysql-public-ip'
    description = 'Deploy Cloud SQL MySQL, validate outputs, probe direct and proxy paths, destroy'

    def get_stages(self, config: RunConfig) -> list[tuple[str, object, str]]:
        return [
            ('bootstrap', BootstrapAction(name='bootstrap'),
             'Resolve project and pick a region'),
            ('deploy', DeployAction(name='deploy'),
             'Apply the example module'),
            ('validate_outputs', ValidateOutputsAction(name='validate-outputs'),
             'Check module outputs'),
            ('sql_tests', SQLTestsAction(name='sql-tests'),
             'Probe the public IP endpoint'),
            ('proxy_tests', ProxyTestsAction(name='proxy-tests'),
             'Probe through the Cloud SQL proxy'),
        ]

    def get_teardown(self, config: RunConfig) -> tuple[str, object, str]:
        return ('teardown', TeardownAction(name='teardown'), 'Destroy the example module')
