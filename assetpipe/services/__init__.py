"""服务层：三条资源流水线、页面协作方边界、清单写入、编排器与服务容器"""
