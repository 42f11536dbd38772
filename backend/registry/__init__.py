"""
Registry Gateway

The engine never talks to the network directly; it calls a RegistryGateway.
UKCompaniesHouseAPI is the production gateway over the Companies House REST API.
"""
from .base import RegistryGateway
from .companies_house import UKCompaniesHouseAPI

__all__ = [
    "RegistryGateway",
    "UKCompaniesHouseAPI",
]
