"""
solarops - Operational tooling for the Solar System application on AWS EKS.

This package provides a CLI that deploys, tears down and cleans up the
Terraform- and eksctl-managed infrastructure behind the Solar System site.
"""

__version__ = "0.1.0"
