"""Start a job against a running server and poll it until it finishes.

Usage: python scripts/smoke_run.py <entry_url> [max_steps] [base_url] [--crawl | --quiz]

--crawl follows links without the vision model; --quiz clicks through a
single-page quiz.
"""
import sys
import time
import requests

TERMINAL = {"completed", "max_turns_reached", "blocked", "failed"}

def start(entry_url, max_steps, base_url, mode):
    if mode == "agent":
        return requests.post(
            f"{base_url}/jobs",
            json={"entryUrl": entry_url, "maxSteps": max_steps},
            timeout=30,
        )
    body = {"entryUrl": entry_url, "maxSteps": max_steps}
    if mode == "quiz":
        body.update(quizMode=True, quizMaxSteps=max_steps)
    return requests.post(f"{base_url}/crawl-jobs", json=body, timeout=30)

def describe(step):
    action = step.get("action")
    if action:
        return f"{action['name']} {action['args']} -> {step['url']}"
    return f"{step['url']} ({step['title']}, {len(step['cta_buttons'])} CTAs, {len(step['forms'])} forms)"

def run(entry_url, max_steps=10, base_url="http://localhost:8000", mode="agent"):
    health_response = requests.get(f"{base_url}/health", timeout=10)
    print("Health check response:", health_response.json())

    print(f"Starting {mode} job for {entry_url}...")
    start_response = start(entry_url, max_steps, base_url, mode)
    start_response.raise_for_status()
    job_id = start_response.json().get("job_id")
    if not job_id:
        print("No job_id received. Check the API logs for errors.")
        return 1

    status_url = f"{base_url}/jobs/{job_id}"
    while True:
        status = requests.get(status_url, timeout=30).json()
        print(f"Job {job_id}: {status.get('status')} step {status.get('current_step')}/{status.get('total_steps')}")
        if status.get("status") in TERMINAL:
            break
        time.sleep(2)

    result = status.get("result") or {}
    for step in result.get("steps", []):
        print(f"  {step['step_index']:>3}. {describe(step)}")
    if status.get("error"):
        print("Error:", status["error"])
    print("Final status:", status.get("status"), result.get("stop_reason"))
    return 0 if status.get("status") != "failed" else 1

if __name__ == "__main__":
    flags = [a for a in sys.argv[1:] if a.startswith("--")]
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    if not args:
        print("Usage: python scripts/smoke_run.py <entry_url> [max_steps] [base_url] [--crawl | --quiz]")
        sys.exit(1)
    mode = "quiz" if "--quiz" in flags else "crawl" if "--crawl" in flags else "agent"
    steps = int(args[1]) if len(args) > 1 else 10
    base = args[2] if len(args) > 2 else "http://localhost:8000"
    sys.exit(run(args[0], steps, base, mode))
