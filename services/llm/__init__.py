from services.llm.router import LLMRouter, llm_router

__all__ = ["LLMRouter", "llm_router"]
