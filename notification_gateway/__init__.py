"""
实时通知网关

- gateway: 服务端连接管理、分发与探活
- client: 客户端断线重连层
- models: 通知载荷与错误码
"""

__version__ = "1.0.0"
