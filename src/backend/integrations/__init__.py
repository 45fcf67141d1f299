"""
Integrations Module - External System Integrations
===================================================

Modules:
    inference_client: Streaming chat-completion calls that analyse a PDF with a prompt

Inference Client (inference_client.py):
    Opens one streaming completion per analysis:
    - The PDF travels as a base64 file part followed by the instruction text
    - Text fragments are yielded in generation order
    - The HTTP stream is closed when the caller exits, including on cancellation

Example:
    Streaming an analysis:

        from integrations.inference_client import InferenceClient

        inference = InferenceClient(openai_client, model="gpt-4.1")
        async with inference.open_stream(prompt.prompt_text, document) as fragments:
            async for fragment in fragments:
                ...

See Also:
    :mod:`api.services.analysis_service`: Orchestration of a streamed analysis
"""
