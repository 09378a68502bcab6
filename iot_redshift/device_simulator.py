#!/usr/bin/env python3
"""
Temperature Sensor Simulator
Registers the temperature sensor thing and reports a random temperature to
its device shadow at a fixed interval
"""

import argparse
import json
import logging
import random
import sys
import time
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from iot_redshift.config import AppConfig, DeviceConfig
from iot_redshift.errors import DeviceSimulatorError


logger = logging.getLogger(__name__)


class TemperatureSensor:
    """
    Simulated IoT device

    Each report is a shadow update whose accepted message lands on
    $aws/things/<thing>/shadow/update/accepted, the topic the Redshift
    topic rule listens to.
    """

    def __init__(self, iot_client, data_client, config: DeviceConfig,
                 sleep: Callable[[float], None] = time.sleep,
                 rng: Optional[random.Random] = None):
        self.iot_client = iot_client
        self.data_client = data_client
        self.config = config
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def thing_name(self) -> str:
        return self.config.thing_name

    def ensure_thing(self) -> Dict[str, Any]:
        """
        Create the thing unless it already exists

        Returns:
            describe_thing response
        """
        try:
            self.iot_client.create_thing(thingName=self.thing_name)
            logger.info(f"Created thing {self.thing_name}")
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceAlreadyExistsException":
                logger.error(f"Failed to create thing {self.thing_name}: {e}")
                raise DeviceSimulatorError(f"Failed to create thing {self.thing_name}: {e}") from e
            logger.info(f"Thing {self.thing_name} already exists")
        except BotoCoreError as e:
            logger.error(f"Failed to create thing {self.thing_name}: {e}")
            raise DeviceSimulatorError(f"Failed to create thing {self.thing_name}: {e}") from e

        try:
            return self.iot_client.describe_thing(thingName=self.thing_name)
        except (ClientError, BotoCoreError) as e:
            raise DeviceSimulatorError(f"Failed to describe thing {self.thing_name}: {e}") from e

    def reading(self) -> Dict[str, Any]:
        temperature = round(
            self._rng.uniform(self.config.min_temperature, self.config.max_temperature), 2
        )
        return {"state": {"reported": {"temperature": temperature}}}

    def publish(self) -> Dict[str, Any]:
        """
        Report one reading to the device shadow

        Returns:
            Reported shadow document
        """
        document = self.reading()
        try:
            response = self.data_client.update_thing_shadow(
                thingName=self.thing_name,
                payload=json.dumps(document).encode("utf-8"),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Shadow update for {self.thing_name} failed: {e}")
            raise DeviceSimulatorError(f"Shadow update for {self.thing_name} failed: {e}") from e

        accepted = json.loads(response["payload"].read())
        logger.info(
            f"Reported {document['state']['reported']} for {self.thing_name} "
            f"(version {accepted.get('version')})"
        )
        return document

    def run(self, iterations: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Publish readings every interval_seconds

        Args:
            iterations: Number of reports; run until interrupted when None

        Returns:
            Reported documents
        """
        published = []
        count = 0
        while iterations is None or count < iterations:
            if count:
                self._sleep(self.config.interval_seconds)
            document = self.publish()
            if iterations is not None:
                published.append(document)
            count += 1
        return published


def create_clients(profile: Optional[str] = None, region: Optional[str] = None):
    """
    IoT control-plane client and an iot-data client bound to the account's
    ATS data endpoint
    """
    try:
        session = boto3.Session(profile_name=profile, region_name=region)
        iot_client = session.client("iot")
    except BotoCoreError as e:
        raise DeviceSimulatorError(f"Failed to create IoT client: {e}") from e
    try:
        endpoint = iot_client.describe_endpoint(endpointType="iot:Data-ATS")["endpointAddress"]
    except (ClientError, BotoCoreError) as e:
        raise DeviceSimulatorError(f"Failed to discover IoT data endpoint: {e}") from e
    logger.info(f"Using IoT data endpoint {endpoint}")
    try:
        data_client = session.client("iot-data", endpoint_url=f"https://{endpoint}")
    except BotoCoreError as e:
        raise DeviceSimulatorError(f"Failed to create IoT data client: {e}") from e
    return iot_client, data_client


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    config = AppConfig.from_environment()
    defaults = config.device
    parser = argparse.ArgumentParser(description="Simulate the IoT temperature sensor")
    parser.add_argument("--profile", default=config.aws.profile, help="AWS CLI profile")
    parser.add_argument("--region", default=config.aws.region, help="AWS region")
    parser.add_argument("--thing-name", default=defaults.thing_name, help="IoT thing name")
    parser.add_argument("--interval", type=float, default=defaults.interval_seconds,
                        help="Seconds between reports")
    parser.add_argument("--iterations", type=int, default=None,
                        help="Stop after this many reports")
    parser.add_argument("--min-temperature", type=float, default=defaults.min_temperature)
    parser.add_argument("--max-temperature", type=float, default=defaults.max_temperature)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = parse_args(argv)
    config = DeviceConfig(
        thing_name=args.thing_name,
        interval_seconds=args.interval,
        min_temperature=args.min_temperature,
        max_temperature=args.max_temperature,
    )
    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(error)
        return 2

    try:
        iot_client, data_client = create_clients(args.profile, args.region)
        sensor = TemperatureSensor(iot_client, data_client, config)
        sensor.ensure_thing()
        sensor.run(args.iterations)
    except DeviceSimulatorError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
