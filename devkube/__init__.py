"""devkube: 开发集群 Pod 连接工具"""

__version__ = "0.1.0"
