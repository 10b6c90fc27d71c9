"""
Example usage of consumable_body.

This example demonstrates how one producer-fed body can be consumed
as text, JSON, a pull stream or raw events, and how errors and early
teardown reach the consumer.
"""

import asyncio

import h11

from consumable_body import (
    AbortError,
    ConsumableStream,
    H11BodySource,
    ParseError,
    UsageError,
    create_consumable_stream,
)


async def accumulate_example():
    """Example: Collecting a body as text and JSON."""
    print("=== Accumulation Example ===")

    body = ConsumableStream()
    result = body.text()
    for chunk in (b"Hello", b", ", b"World", b"!"):
        body.push(chunk)
    body.push(None)
    print(f"Text: {await result}")

    body = create_consumable_stream([b'{"status":', b' "ok"}'])
    print(f"JSON: {await body.json()}")

    try:
        body.text()
    except UsageError as e:
        print(f"Second consumer rejected: {e}")


async def pull_stream_example():
    """Example: Producer pausing on backpressure."""
    print("\n=== Pull Stream Example ===")

    data = [b"x" * 1024 for _ in range(32)]
    position = 0

    def produce():
        """Push until the consumer has no spare capacity."""
        nonlocal position
        while position < len(data):
            chunk = data[position]
            position += 1
            if not body.push(chunk):
                print(f"Paused after {position} chunks")
                return
        body.push(None)

    body = ConsumableStream(on_read=produce, stream_high_water_mark=8 * 1024)
    stream = body.body

    total = 0
    async for chunk in stream:
        total += len(chunk)
    print(f"Received: {total} bytes")


async def http_example():
    """Example: Feeding an HTTP/1.1 response body parsed by h11."""
    print("\n=== HTTP/1.1 Body Example ===")

    connection = h11.Connection(h11.CLIENT)
    connection.send(h11.Request(method="GET", target="/", headers=[("Host", "example.com")]))
    connection.send(h11.EndOfMessage())

    source = H11BodySource(connection)
    result = source.body.text()
    source.receive_data(
        b"HTTP/1.1 200 OK\r\n"
        b"Transfer-Encoding: chunked\r\n"
        b"\r\n"
        b"7\r\nchunked\r\n"
        b"5\r\n body\r\n"
        b"0\r\n\r\n"
    )
    print(f"Status: {source.response.status_code}")
    print(f"Body: {await result}")


async def error_handling_example():
    """Example: Errors reaching the consumer."""
    print("\n=== Error Handling Example ===")

    body = create_consumable_stream(b"not json")
    try:
        await body.json()
    except ParseError as e:
        print(f"Caught error: {e}")

    body = ConsumableStream()
    result = body.array_buffer()
    body.push(b"partial")
    body.destroy()
    try:
        await result
    except AbortError as e:
        print(f"Caught error: {e}")


async def main():
    """Run all examples."""
    print("consumable_body Examples")
    print("=" * 50)

    try:
        await accumulate_example()
        await pull_stream_example()
        await http_example()
        await error_handling_example()

        print("\n" + "=" * 50)
        print("All examples completed successfully!")

    except Exception as e:
        print(f"Error running examples: {e}")


if __name__ == "__main__":
    asyncio.run(main())
