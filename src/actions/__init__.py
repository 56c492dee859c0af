"""Adapters for the provisioning engine, GCP lookups and database probes."""

from actions.terraform import (
    ProvisioningOptions,
    build_options,
    init_and_apply,
    output,
    output_all,
    destroy,
    prepare_work_dir,
)
from actions.gcp import get_random_region, list_regions
from actions.mysql import DirectTarget, TunnelTarget, verify_direct, verify_tunnel

__all__ = [
    'ProvisioningOptions',
    'build_options',
    'init_and_apply',
    'output',
    'output_all',
    'destroy',
    'prepare_work_dir',
    'get_random_region',
    'list_regions',
    'DirectTarget',
    'TunnelTarget',
    'verify_direct',
    'verify_tunnel',
]
