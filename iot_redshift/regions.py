"""
Firehose CIDR lookup
Static per-region IP ranges Kinesis Data Firehose uses to reach Redshift
"""

import ipaddress
import json
import logging
from importlib import resources
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from iot_redshift.errors import ConfigurationError, UnknownRegionError


logger = logging.getLogger(__name__)

DEFAULT_TABLE_RESOURCE = "firehose_cidr_blocks.json"


class RegionCidrTable:
    """
    Exact-match mapping of region ID to CIDR block

    There is no fallback: a region missing from the table fails the build.
    """

    def __init__(self, blocks: Mapping[str, str]):
        for region, cidr in blocks.items():
            try:
                ipaddress.ip_network(cidr)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid CIDR block {cidr!r} for region {region}: {e}"
                ) from e
        self._blocks: Dict[str, str] = dict(blocks)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Mapping[str, str]]) -> "RegionCidrTable":
        """Build from the {region: {"cidrBlock": ...}} layout of the data file"""
        try:
            return cls({region: entry["cidrBlock"] for region, entry in mapping.items()})
        except (KeyError, TypeError, AttributeError) as e:
            raise ConfigurationError(f"Malformed Firehose CIDR table: {e!r}") from e

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RegionCidrTable":
        try:
            with open(path, "r") as f:
                mapping = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot load Firehose CIDR table {path}: {e}") from e
        logger.debug("Loaded Firehose CIDR table from %s", path)
        return cls.from_mapping(mapping)

    @property
    def regions(self):
        return tuple(self._blocks)

    def __contains__(self, region: str) -> bool:
        return region in self._blocks

    def __len__(self) -> int:
        return len(self._blocks)

    def lookup(self, region: str) -> str:
        try:
            return self._blocks[region]
        except KeyError:
            raise UnknownRegionError(region, self.regions) from None


def load_region_table(path: Optional[Union[str, Path]] = None) -> RegionCidrTable:
    """
    Load the Firehose CIDR table

    Args:
        path: JSON file to load; the packaged table when omitted

    Returns:
        Region lookup table
    """
    if path:
        return RegionCidrTable.from_file(path)

    data = resources.files("iot_redshift.data").joinpath(DEFAULT_TABLE_RESOURCE).read_text()
    return RegionCidrTable.from_mapping(json.loads(data))
