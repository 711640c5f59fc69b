"""SmartAir City: ingesta y consulta de calidad del aire (NGSI-LD AirQualityObserved)."""

__version__ = "1.0.0"
