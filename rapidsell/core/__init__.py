"""Engine core: models, state machine, orchestration, ambient stack"""
