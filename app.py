import io
import logging
import time

import streamlit as st
from PIL import Image

from sss_core import PRIME, SecretSharingError, ThresholdScheme
from image_utils import (
    bundle_shares_zip,
    compare_downscale_paths,
    grid_to_image,
    image_to_grid,
    image_to_shares,
    parse_share_index,
    shares_to_image,
)

logging.basicConfig(level=logging.INFO)

# Roughly a 700x700 image
LARGE_IMAGE_PIXELS = 500000

# Set page configuration
st.set_page_config(
    page_title="Shamir's Secret Sharing Image Tool",
    page_icon="🔐",
    layout="wide",
)

# Custom CSS for styling
st.markdown("""
<style>
    .stApp {
        max-width: 1200px;
        margin: 0 auto;
    }
    h1, h2, h3 {
        color: #2b2d42;
    }
    .info-box {
        background-color: #8d99ae;
        color: white;
        padding: 1rem;
        border-radius: 5px;
        margin-bottom: 1rem;
    }
    .success-box {
        background-color: #2b2d42;
        color: white;
        padding: 1rem;
        border-radius: 5px;
        margin-bottom: 1rem;
    }
    .error-box {
        background-color: #ef233c;
        color: white;
        padding: 1rem;
        border-radius: 5px;
        margin-bottom: 1rem;
    }
</style>
""", unsafe_allow_html=True)


def message_box(kind, text):
    st.markdown(f'<div class="{kind}-box">{text}</div>', unsafe_allow_html=True)


def png_bytes(image):
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def show_images(images, captions):
    # At most 3 columns
    cols = st.columns(max(1, min(3, len(images))))
    for i, (img, caption) in enumerate(zip(images, captions)):
        with cols[i % len(cols)]:
            st.image(img, caption=caption, use_container_width=True)


def warn_if_large(image):
    if image.width * image.height > LARGE_IMAGE_PIXELS:
        message_box("error", (
            "You have uploaded a large image! Processing may take a while. "
            "Consider using a smaller image for faster results."
        ))


def scheme_inputs(key):
    """Total shares (n) and threshold (k) widgets; returns (n, k)."""
    col1, col2 = st.columns(2)
    with col1:
        n = st.number_input("Total Number of Shares (n)", min_value=2, max_value=10, value=3, step=1, key=f"{key}_n")
    with col2:
        k = st.number_input("Minimum Required Shares (k)", min_value=1, max_value=int(n), value=min(2, int(n)), step=1, key=f"{key}_k")
    return int(n), int(k)


# Initialize session state variables if they don't exist
if 'share_images' not in st.session_state:
    st.session_state.share_images = []
if 'threshold' not in st.session_state:
    st.session_state.threshold = 2

# Header
st.title("🔐 Shamir's Secret Sharing Image Tool")
message_box("info", (
    f"Split a grayscale image into n shares over GF({PRIME}) so that any k of them "
    "rebuild it, and check how averaging the shares compares with averaging the image."
))

tab1, tab2, tab3 = st.tabs(["📊 Split Image", "🔄 Combine Shares", "🔍 Downscale Check"])

with tab1:
    st.header("Split Image")

    uploaded_file = st.file_uploader("Upload an image (JPG, PNG, BMP)", type=["jpg", "jpeg", "png", "bmp"])

    if uploaded_file is not None:
        image = Image.open(uploaded_file)
        st.image(image, caption="Uploaded Image", use_container_width=True)

        warn_if_large(image)

        n, k = scheme_inputs("split")
        st.session_state.threshold = k

        if st.button("Encrypt and Create Shares"):
            with st.spinner("Processing image and generating shares..."):
                progress_bar = st.progress(0.0)
                try:
                    _, share_images = image_to_shares(
                        image, n, k,
                        progress_callback=lambda p: progress_bar.progress(min(p, 1.0)),
                    )
                except SecretSharingError as e:
                    message_box("error", f"Error: An issue occurred while generating shares: {e}")
                else:
                    st.session_state.share_images = share_images
                    time.sleep(0.5)  # Give a moment to see 100%
                    message_box("success", "Success! Shares have been generated.")

        if st.session_state.share_images:
            st.subheader("Generated Shares")
            share_images = st.session_state.share_images
            show_images(share_images, [f"Share {i}" for i in range(1, len(share_images) + 1)])
            for i, share_img in enumerate(share_images, start=1):
                st.download_button(
                    f"Download Share {i} (.png)", png_bytes(share_img),
                    file_name=f"share_{i}.png", mime="image/png", key=f"share_{i}",
                )
            st.markdown("### Download All Shares")
            st.download_button(
                "Download All Shares (.zip)", bundle_shares_zip(share_images),
                file_name="all_shares.zip", mime="application/zip",
            )
    else:
        st.info("Please upload an image file. (JPG, PNG or BMP format)")

with tab2:
    st.header("Combine Shares")
    message_box("info", (
        "To combine the image, upload at least the threshold number (k) of shares. "
        "Share filenames should be in the format 'share_X.png', where X is the share number."
    ))

    threshold = st.number_input(
        "Threshold used when splitting (k)", min_value=1, max_value=PRIME - 1,
        value=int(st.session_state.threshold), step=1,
    )
    uploaded_shares = st.file_uploader(
        f"Upload Shares (At least {threshold})", type=["png"], accept_multiple_files=True
    )

    if uploaded_shares:
        shares = []
        for share_file in uploaded_shares:
            idx = parse_share_index(share_file.name)
            if idx is None:
                message_box("error", f"Error loading share: {share_file.name} - no share number in the filename")
                continue
            shares.append((idx, Image.open(share_file)))

        st.subheader("Uploaded Shares")
        show_images([img for _, img in shares], [f"Share {idx}" for idx, _ in shares])

        if len(shares) < threshold:
            message_box("error", (
                f"You need to upload at least {threshold} shares to combine the image. "
                f"You have uploaded {len(shares)}."
            ))
        elif st.button("Combine and Show Image"):
            with st.spinner("Combining shares..."):
                progress_bar = st.progress(0.0)
                try:
                    combined_image = shares_to_image(
                        shares, int(threshold),
                        progress_callback=lambda p: progress_bar.progress(min(p, 1.0)),
                    )
                except SecretSharingError as e:
                    message_box("error", f"Error: An issue occurred while combining shares: {e}")
                else:
                    message_box("success", "Combine successful! Original image has been reconstructed.")
                    st.subheader("Reconstructed Original Image")
                    st.image(combined_image, caption="Reconstructed Image", use_container_width=True)
                    st.download_button(
                        "Download Original Image (.png)", png_bytes(combined_image),
                        file_name="recovered_image.png", mime="image/png",
                    )
    else:
        st.info("Please upload the image shares you want to combine.")

with tab3:
    st.header("Downscale Check")
    message_box("info", (
        "Compares a 2x2 averaging downscale of the image with the image rebuilt "
        "from downscaled shares, and reports the mean absolute error."
    ))

    check_file = st.file_uploader("Upload an image", type=["jpg", "jpeg", "png", "bmp"], key="check_upload")
    if check_file is not None:
        check_image = Image.open(check_file)
        warn_if_large(check_image)

        n, k = scheme_inputs("check")
        if st.button("Run Downscale Check"):
            with st.spinner("Sharing, downscaling and reconstructing..."):
                check_progress = st.progress(0.0)
                try:
                    scheme = ThresholdScheme(k, n)
                    result = compare_downscale_paths(
                        image_to_grid(check_image), scheme,
                        progress_callback=lambda p: check_progress.progress(min(p, 1.0)),
                    )
                except SecretSharingError as e:
                    message_box("error", f"Error: {e}")
                else:
                    show_images(
                        [grid_to_image(result.direct), grid_to_image(result.reconstructed)],
                        ["Downscaled original", f"Reconstructed from shares 1..{k}"],
                    )
                    st.metric("Mean absolute error", f"{result.mae:.4f}")
    else:
        st.info("Please upload an image file to check.")

# Footer
st.markdown("""
---
<p style="text-align: center; color: #8d99ae;">
Shamir's Secret Sharing Image Encryption/Decryption App
</p>
""", unsafe_allow_html=True)
