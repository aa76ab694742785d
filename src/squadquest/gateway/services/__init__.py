"""Gateway 后台服务"""
