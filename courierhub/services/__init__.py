# Services layer: orchestration over the provider adapters
