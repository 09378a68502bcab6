"""
IoT → Redshift analytics stacks
Composes the IoT ingestion pipeline and the Tableau Server stack as
CloudFormation resource graphs
"""

__version__ = "0.1.0"
