from richlist.datasources.node import NodeDatasource

__all__ = ('NodeDatasource',)
