"""
BDNS API client.
"""

from .bdns_api import BdnsApiPager, BdnsPage

__all__ = ['BdnsApiPager', 'BdnsPage']
