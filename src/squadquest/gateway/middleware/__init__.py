"""Gateway 中间件"""
