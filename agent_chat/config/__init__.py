"""配置层：从环境变量、.env 与 config.yaml 加载进程级设置。"""
