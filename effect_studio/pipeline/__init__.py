"""
Effect Transformation Pipeline

1. Generation - Gemini image model, bounded by a timeout
2. Fallback - Deterministic Pillow filter recipes
3. Executor - Resolve, load, transform, encode and persist
"""
