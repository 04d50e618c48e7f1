"""Analysis domains: result schemas, prompt templates, context builders."""
