"""
Generation Pipeline

Background pipeline behind each generation request:
1. Prompt - model attributes + background -> prompt pair
2. Synthesis - one provider call per pose, concurrently
3. Publish - download, store and record each image
"""
