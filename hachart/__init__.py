"""hachart: resolves live Home Assistant data into ECharts option trees."""

__version__ = "0.4.0"
