from intent_use.statistics.service import ExecutionStatistics, ExecutionStatisticsStore

__all__ = ['ExecutionStatistics', 'ExecutionStatisticsStore']
