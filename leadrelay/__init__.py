"""
LeadRelay: lead notification and remarketing dispatch.
"""

__version__ = "1.0.0"
